"""FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from fieldlogic.config.loader import ConfigLoader
from fieldlogic.config.validator import validate_document
from fieldlogic.engine.dependencies import DependencyResolver
from fieldlogic.engine.form import FormEngine
from fieldlogic.engine.graph import DependencyGraph, compile_entries
from fieldlogic.engine.scope import build_specs
from fieldlogic.errors import ConfigurationError
from fieldlogic.expressions.functions import default_functions
from fieldlogic.registry import FunctionRegistry
from fieldlogic.settings import Settings

logger = logging.getLogger(__name__)


class ValidateRequest(BaseModel):
    config: dict[str, Any]


class EvaluateRequest(BaseModel):
    config: dict[str, Any]
    values: dict[str, Any] = Field(default_factory=dict)
    externalData: dict[str, Any] = Field(default_factory=dict)


def create_forms_router(
    get_registry=lambda: None,
    get_settings=Settings.from_env,
) -> APIRouter:
    """Create the form configuration router.

    Args:
        get_registry: Returns the FunctionRegistry used for evaluation
        get_settings: Returns the engine Settings
    """
    router = APIRouter(prefix="/api", tags=["forms"])

    @router.post("/forms/validate")
    def validate_form(body: ValidateRequest) -> dict[str, Any]:
        """Check a configuration against the JSON Schema and the loader rules."""
        issues = [
            {"path": issue.path, "message": issue.message, "severity": issue.severity}
            for issue in validate_document(body.config)
        ]
        if not any(issue["severity"] == "error" for issue in issues):
            try:
                config = ConfigLoader().load_dict(body.config)
                DependencyGraph(compile_entries(build_specs(config.fields), DependencyResolver()))
            except ConfigurationError as e:
                issues.append({"path": e.path or "", "message": str(e), "severity": "error"})
        return {
            "valid": not any(issue["severity"] == "error" for issue in issues),
            "issues": issues,
        }

    @router.post("/forms/evaluate")
    async def evaluate_form(body: EvaluateRequest) -> dict[str, Any]:
        """Resolve values, field states and messages for the submitted values."""
        try:
            engine = FormEngine(
                ConfigLoader().load_dict(body.config),
                registry=get_registry(),
                initial_value=body.values,
                external_data=body.externalData,
                settings=get_settings(),
            )
        except ConfigurationError as e:
            raise HTTPException(422, str(e))

        try:
            await engine.settle()
            return {
                "value": engine.value,
                "valid": engine.valid,
                "errors": engine.errors(),
                "states": {path: s.to_dict() for path, s in engine.field_states().items()},
                "diagnostics": [d.to_dict() for d in engine.diagnostics],
                "graph": engine.graph.to_dict(),
            }
        finally:
            await engine.close()

    @router.get("/functions")
    def list_functions() -> dict[str, Any]:
        """Document the built-in expression functions."""
        return default_functions().export_documentation()

    return router


def create_app(registry: FunctionRegistry | None = None) -> FastAPI:
    """Build the API application around an optional function registry."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "fieldlogic API started with %d registered derivations",
            len(app.state.registry.derivations.list_registered()),
        )
        yield

    app = FastAPI(title="fieldlogic API", lifespan=lifespan)
    app.state.registry = registry if registry is not None else FunctionRegistry()

    # CORS for frontend dev server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_forms_router(get_registry=lambda: app.state.registry))

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
