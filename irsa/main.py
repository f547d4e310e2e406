"""FastAPI application for IRSA bootstrap."""

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI

from irsa.routes.irsa import router as irsa_router

app = FastAPI(
    title="IRSA Bootstrap",
    description="Bind Kubernetes service accounts on EKS to IAM roles "
    "through the cluster's OIDC provider.",
    version="1.0.0",
)

app.include_router(irsa_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
