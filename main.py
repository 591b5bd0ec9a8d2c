from fastapi import FastAPI, HTTPException

from api.app import create_app
from core.constraint import APP_VERSION

try:
    app = create_app(require_enabled=True)
except RuntimeError:
    app = FastAPI(title="CT Batch Converter", version=APP_VERSION)

    @app.get("/")
    async def api_disabled() -> dict[str, str]:
        raise HTTPException(
            status_code=503,
            detail="Local API disabled. Set enable_local_api = true under [runtime] in config.toml or CTB_ENABLE_LOCAL_API=1",
        )
