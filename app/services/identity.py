"""Auth identities via the auth provider's admin API (GoTrue / Supabase Auth)."""
import logging
import secrets
import string

import httpx

log = logging.getLogger("uvicorn.error")

TEMP_PASSWORD_LENGTH = 32
_PASSWORD_CLASSES = (string.ascii_lowercase, string.ascii_uppercase, string.digits, string.punctuation)
_PASSWORD_ALPHABET = "".join(_PASSWORD_CLASSES)

_EMAIL_EXISTS_CODES = {"email_exists", "user_already_exists"}


class IdentityServiceError(Exception):
    """Auth provider unreachable or returned an unexpected response."""


class IdentityExistsError(IdentityServiceError):
    """The email is already registered with the auth provider."""


def generate_temporary_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    """One-time credential from the OS CSPRNG, with at least one char of every class."""
    if length < len(_PASSWORD_CLASSES):
        raise ValueError("length too short")
    chars = [secrets.choice(cls) for cls in _PASSWORD_CLASSES]
    chars += [secrets.choice(_PASSWORD_ALPHABET) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def _error_text(r: httpx.Response) -> tuple[str, str]:
    try:
        body = r.json() or {}
    except ValueError:
        return "", r.text[:500]
    code = str(body.get("error_code") or body.get("code") or "")
    msg = str(body.get("msg") or body.get("message") or body.get("error_description") or body.get("error") or "")
    return code, msg


def _json_body(r: httpx.Response, what: str) -> dict:
    try:
        body = r.json()
    except ValueError as e:
        log.error("[Auth] %s returned a non-JSON body: status=%s body=%s", what, r.status_code, r.text[:200])
        raise IdentityServiceError(f"{what} response is not JSON") from e
    return body if isinstance(body, dict) else {}


def _is_email_exists(r: httpx.Response) -> bool:
    code, msg = _error_text(r)
    return code in _EMAIL_EXISTS_CODES or "already been registered" in msg.lower() or "already registered" in msg.lower()


class IdentityProvisioner:
    def __init__(self, base_url: str, service_role_key: str, client: httpx.Client | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)
        self.headers = {
            "apikey": service_role_key,
            "Authorization": f"Bearer {service_role_key}",
        }

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/auth/v1/admin/{path}"

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, self._url(path), headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            log.error("[Auth] %s %s transport error: %s: %s", method, path, type(e).__name__, e)
            raise IdentityServiceError(f"{type(e).__name__}: {e}") from e

    def create(self, email: str, full_name: str | None = None) -> str:
        """Create a confirmed user with a throwaway password; returns the provider's user id.
        The password is discarded: the user signs in through the magic link or password reset."""
        payload = {
            "email": email,
            "password": generate_temporary_password(),
            "email_confirm": True,
            "user_metadata": {"full_name": full_name} if full_name else {},
        }
        r = self._send("POST", "users", json=payload)
        if r.status_code >= 400:
            code, msg = _error_text(r)
            if _is_email_exists(r):
                log.info("[Auth] create user rejected: email already registered (%s)", email)
                raise IdentityExistsError(msg or "email already registered")
            log.error("[Auth] create user failed: status=%s code=%s msg=%s", r.status_code, code, msg)
            raise IdentityServiceError(f"create user failed: status={r.status_code} {msg}")
        body = _json_body(r, "create user")
        user_id = body.get("id") or (body.get("user") or {}).get("id")
        if not user_id:
            raise IdentityServiceError("create user response has no id")
        return str(user_id)

    def delete(self, identity_id: str) -> None:
        r = self._send("DELETE", f"users/{identity_id}")
        if r.status_code >= 400:
            code, msg = _error_text(r)
            raise IdentityServiceError(f"delete user {identity_id} failed: status={r.status_code} code={code} {msg}")

    def generate_magic_link(self, email: str, redirect_to: str) -> str:
        r = self._send("POST", "generate_link", json={"type": "magiclink", "email": email, "redirect_to": redirect_to})
        if r.status_code >= 400:
            code, msg = _error_text(r)
            raise IdentityServiceError(f"generate_link failed: status={r.status_code} code={code} {msg}")
        body = _json_body(r, "generate_link")
        link = body.get("action_link") or (body.get("properties") or {}).get("action_link")
        if not link:
            raise IdentityServiceError("generate_link response has no action_link")
        return link
