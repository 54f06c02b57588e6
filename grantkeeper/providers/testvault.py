import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional

from grantkeeper.core.context import Context
from grantkeeper.errors import ProviderError, ValidationError
from grantkeeper.providers.base import Args, parse_args

logger = logging.getLogger(__name__)

REQUIRED_ARGS = ("vault",)


class TestVaultProvider:
    """
    Grants membership of a vault on a simple HTTP test service.
    Useful to exercise the full grant lifecycle without any cloud account.
    """
    __test__ = False  # keep pytest from collecting this class

    def __init__(self, api_url: str, unique_id: str = "", timeout: float = 10.0):
        # Validate URL scheme for security (Bandit B310)
        if not api_url or not api_url.startswith(("https://", "http://")):
            raise ValidationError(f"Invalid testvault API URL: {api_url}")
        self.api_url = api_url.rstrip("/")
        self.unique_id = unique_id
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "TestVaultProvider":
        if "apiUrl" not in cfg:
            raise ValidationError("testvault provider config is missing 'apiUrl'")
        return cls(api_url=cfg["apiUrl"], unique_id=cfg.get("uniqueId", ""))

    def __repr__(self):
        return f"TestVaultProvider(api_url={self.api_url})"

    def _vault(self, args: Args) -> str:
        vault = parse_args(args, REQUIRED_ARGS)["vault"]
        # vaults are prefixed so several deployments can share one test service
        return f"{self.unique_id}_{vault}" if self.unique_id else vault

    def _member_url(self, vault: str, subject: str) -> str:
        return f"{self.api_url}/vaults/{urllib.parse.quote(vault, safe='')}/members/{urllib.parse.quote(subject, safe='')}"

    def _call(self, ctx: Context, method: str, url: str, body: Optional[dict] = None) -> int:
        """Returns the HTTP status code. 404 is returned, not raised."""
        if ctx.done():
            raise ProviderError("context ended before calling testvault")
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(url, data=data, headers={"Content-Type": "application/json"}, method=method)
        timeout = self.timeout
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = min(timeout, max(remaining, 0.1))
        try:
            with urllib.request.urlopen(req, timeout=timeout) as response:  # nosec B310
                return response.status
        except urllib.error.HTTPError as e:
            if e.code == 404:
                return 404
            raise ProviderError(f"testvault API error: HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise ProviderError(f"network error calling testvault: {e.reason}") from e
        except (OSError, TimeoutError) as e:
            raise ProviderError(f"network error calling testvault: {type(e).__name__}: {e}") from e

    def validate(self, args: Args) -> None:
        self._vault(args)

    def grant(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        vault = self._vault(args)
        logger.info(f"Assigning access to vault {vault}")
        status = self._call(ctx, "POST", f"{self.api_url}/vaults/{urllib.parse.quote(vault, safe='')}/members", {"user": subject})
        if status == 404:
            raise ProviderError(f"vault {vault} not found")

    def revoke(self, ctx: Context, subject: str, args: Args, grant_id: str) -> None:
        vault = self._vault(args)
        logger.info(f"Removing vault member from {vault}")
        if self._call(ctx, "DELETE", self._member_url(vault, subject)) == 404:
            logger.warning("Vault membership already removed. Continuing...")

    def is_active(self, ctx: Context, subject: str, args: Args, grant_id: str) -> bool:
        vault = self._vault(args)
        return self._call(ctx, "GET", self._member_url(vault, subject)) == 200

    def instructions(self, ctx: Context, subject: str, args: Args, grant_id: str) -> str:
        url = self._member_url(self._vault(args), subject)
        return (
            "This is a test resource to show how grants work.\n"
            f"Visit the [vault membership URL]({url}) to check that your access has been provisioned."
        )
