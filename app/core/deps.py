"""FastAPI dependencies for the pipeline components."""

from fastapi import Request

from app.services.pipeline import Pipeline, build_pipeline


def get_pipeline(request: Request) -> Pipeline:
    """The application's pipeline, built on first use when lifespan did not run."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline()
        request.app.state.pipeline = pipeline
    return pipeline
