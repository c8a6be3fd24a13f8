"""Deploy requests handed from the CLI to the running gateway.

The requester writes the request file and signals the gateway's PID. The
gateway consumes the file and runs the pipeline itself, so the drain sees
its real in-flight work and the deploy state file keeps a single writer.
"""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from gatewarden.deploy.types import DeployRequest
from gatewarden.utils.helpers import atomic_write_text, format_iso, utc_now


def write_deploy_request(path: Path, initiated_by: str, requested_at: str | None = None) -> DeployRequest:
    request = DeployRequest(
        initiated_by=initiated_by,
        requested_at=requested_at or format_iso(utc_now()),
    )
    atomic_write_text(Path(path), json.dumps(request.to_dict()))
    return request


def discard_deploy_request(path: Path) -> None:
    Path(path).unlink(missing_ok=True)


def take_deploy_request(path: Path) -> DeployRequest | None:
    """Read and remove the pending request. Returns None if there is none usable."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Deploy: unreadable request file {path}: {e}")
        discard_deploy_request(path)
        return None

    discard_deploy_request(path)
    try:
        return DeployRequest.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Deploy: ignoring malformed request file {path}: {e}")
        return None
