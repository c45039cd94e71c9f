from __future__ import annotations

from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from common.logging_setup import get_logger
from dynamic_image_style.config import AppConfig, load_config
from dynamic_image_style.delivery import DeliveryGate, gate_from_config
from dynamic_image_style.errors import DynamicImageStyleError

log = get_logger(__name__)


def create_app(cfg: Optional[AppConfig] = None, gate: Optional[DeliveryGate] = None) -> FastAPI:
    """
    Build the HTTP host.

      GET {route_prefix}/{file}/{settings}  -> derivative bytes (200) | JSON error (400/404/500)
      GET {styles_url}/...                  -> previously generated derivatives (static)
      GET /health
    """
    cfg = cfg or load_config()
    gate = gate or gate_from_config(cfg)

    app = FastAPI(title="Dynamic Image Style API", version="1.0.0")
    app.state.config = cfg
    app.state.gate = gate

    # (Optional) CORS for local dev tools
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(DynamicImageStyleError)
    async def _handle_style_error(request: Request, exc: DynamicImageStyleError):
        if exc.status_code >= 500:
            log.error("Derivative delivery failed: %s", exc.message, extra={"extra": {"path": request.url.path}})
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.get("/health")
    def health():
        try:
            registered = gate.validity.count()
        except Exception as e:  # pragma: no cover
            log.warning("Validity cache unavailable: %s", e)
            registered = None
        return {
            "status": "ok",
            "cache": {"backend": gate.validity.backend.name, "registered": registered},
            "proxy": {"enabled": gate.fetcher is not None},
            "storage": {
                "files_root": str(gate.store.files_root),
                "files_root_exists": Path(gate.store.files_root).exists(),
            },
        }

    @app.get(gate.route_prefix + "/{file:path}/{settings}")
    def deliver(file: str, settings: str):
        """
        Return derivative bytes for a registered settings string.

        Order:
          1) allow-list check (400 if the settings were never issued)
          2) source lookup, staging proxy fallback if enabled (404)
          3) generate on first request, reuse afterwards
        """
        d = gate.deliver(file, settings)
        return Response(content=d.body, media_type=d.content_type, headers=d.headers)

    Path(gate.store.styles_root).mkdir(parents=True, exist_ok=True)
    app.mount(
        gate.store.styles_url,
        StaticFiles(directory=str(gate.store.styles_root)),
        name="styles",
    )
    return app


app = create_app()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    _cfg: AppConfig = app.state.config
    uvicorn.run(app, host=_cfg.server.host, port=_cfg.server.port)
