"""Conduit API client for Phabricator Maniphest tasks."""

import logging
import ssl
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)

from .config import CertIdentityConfig, ClientConfig
from .errors import (
    CertificateIdentityError,
    DecodeError,
    NotFoundError,
    TransportError,
    UnauthorizedError,
)
from .models import Task, User

log = logging.getLogger(__name__)

# Conduit caps search pages at 100 results
SEARCH_LIMIT = 100
SUBTASK_EDGE = "task.subtask"
AUTH_ERROR_CODES = {"ERR-INVALID-AUTH", "ERR-INVALID-SESSION"}


def clean_id(task_id: str) -> str:
    """
    Strip the leading 'T' from a task id.

    Covers ids copied from task URLs, e.g. yourphabhost.com/T1234.

    >>> clean_id("T1234")
    '1234'
    """
    task_id = str(task_id).strip()
    return task_id[1:] if task_id.startswith("T") else task_id


def load_cert_identity(config: CertIdentityConfig) -> ssl.SSLContext:
    """
    Build an SSL context presenting the PKCS#12 bundle as client certificate.

    Raises:
        CertificateIdentityError: If the bundle cannot be read or decrypted
    """
    path = config.pkcs12_path
    try:
        bundle = Path(path).read_bytes()
    except OSError as e:
        raise CertificateIdentityError(path, f"Failed to read pkcs12 from {path}, {e}")

    password = config.pkcs12_password.encode() if config.pkcs12_password else None
    try:
        key, cert, additional = pkcs12.load_key_and_certificates(bundle, password)
    except ValueError as e:
        raise CertificateIdentityError(path, str(e))

    if key is None or cert is None:
        raise CertificateIdentityError(path, "bundle has no private key or certificate")

    pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    pem += cert.public_bytes(Encoding.PEM)
    for extra in additional or []:
        pem += extra.public_bytes(Encoding.PEM)

    context = ssl.create_default_context()
    # ssl can only load a client chain from disk; the directory is private to us
    with tempfile.TemporaryDirectory() as tmpdir:
        pem_path = Path(tmpdir) / "identity.pem"
        pem_path.write_bytes(pem)
        try:
            context.load_cert_chain(str(pem_path))
        except ssl.SSLError as e:
            raise CertificateIdentityError(path, str(e))

    return context


class PhabricatorClient:
    """Sync client for the Conduit API, safe to share between threads."""

    def __init__(self, config: ClientConfig, transport: Optional[httpx.BaseTransport] = None):
        self.host = config.host.rstrip("/")
        self._api_token = config.api_token

        verify: Any = True
        if config.cert_identity_config is not None:
            verify = load_cert_identity(config.cert_identity_config)

        self._http = httpx.Client(
            headers={
                "Authorization": f"Bearer {self._api_token}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(config.timeout, connect=10.0),
            verify=verify,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "PhabricatorClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Tasks ──────────────────────────────────────────────────

    def get_task(self, task_id: str) -> Task:
        """
        Fetch one task with the ids of its direct subtasks.

        Raises:
            NotFoundError: If the service returns no such task
        """
        tasks = self.get_tasks([task_id])
        task_id = clean_id(task_id)
        if task_id not in tasks:
            raise NotFoundError(f"Could not find task T{task_id}", task_id=task_id)
        return tasks[task_id]

    def get_tasks(self, task_ids: Iterable[str]) -> Dict[str, Task]:
        """
        Fetch several tasks at once.

        Ids the service does not know about are absent from the result.
        Any protocol failure fails the whole call.
        """
        ids = _unique(clean_id(task_id) for task_id in task_ids)
        for task_id in ids:
            if not task_id.isdigit():
                raise NotFoundError(f"Invalid task id '{task_id}'", task_id=task_id)
        if not ids:
            return {}

        records: List[Dict[str, Any]] = []
        for chunk in _chunks(ids, SEARCH_LIMIT):
            params = {
                "order": "oldest",
                "attachments[columns]": "true",
                "attachments[projects]": "true",
            }
            params.update(_indexed("constraints[ids]", chunk))
            records.extend(self._search("maniphest.search", params))

        try:
            phids = [record["phid"] for record in records]
        except (KeyError, TypeError):
            raise DecodeError(f"Task records without phid: {records!r}")

        children = self._child_ids(phids)

        tasks = {}
        for record in records:
            task = Task.from_conduit(record, children.get(record["phid"], ()))
            tasks[task.id] = task

        log.debug("Fetched tasks %s", sorted(tasks, key=int))
        return tasks

    def _child_ids(self, parent_phids: List[str]) -> Dict[str, Tuple[str, ...]]:
        """Map each parent PHID to the ids of its subtasks, oldest first."""
        if not parent_phids:
            return {}

        edges: List[Dict[str, Any]] = []
        for chunk in _chunks(parent_phids, SEARCH_LIMIT):
            params = {"types[0]": SUBTASK_EDGE}
            params.update(_indexed("sourcePHIDs", chunk))
            edges.extend(self._search("edge.search", params))

        try:
            pairs = [(edge["sourcePHID"], edge["destinationPHID"]) for edge in edges]
        except (KeyError, TypeError):
            raise DecodeError(f"Cannot parse edges {edges!r}")

        destinations = _unique(dest for _, dest in pairs)
        if not destinations:
            return {}

        id_by_phid = self._task_ids_by_phid(destinations)

        children: Dict[str, set] = defaultdict(set)
        for source, dest in pairs:
            child_id = id_by_phid.get(dest)
            if child_id is not None:
                children[source].add(child_id)

        return {phid: tuple(sorted(ids, key=int)) for phid, ids in children.items()}

    def _task_ids_by_phid(self, phids: List[str]) -> Dict[str, str]:
        result = self._call("phid.query", _indexed("phids", phids))
        if isinstance(result, list) and not result:
            # PHP encodes an empty map as []
            return {}
        if not isinstance(result, dict):
            raise DecodeError(f"Cannot parse phid.query result {result!r}")

        ids = {}
        for phid, info in result.items():
            name = (info or {}).get("name", "")
            if (info or {}).get("type") == "TASK" and clean_id(name).isdigit():
                ids[phid] = clean_id(name)
        return ids

    # ── Users ──────────────────────────────────────────────────

    def get_users(self, user_phids: Iterable[str]) -> Dict[str, User]:
        """Fetch users by PHID, keyed by PHID."""
        phids = _unique(user_phids)
        if not phids:
            return {}

        users = {}
        for chunk in _chunks(phids, SEARCH_LIMIT):
            for record in self._search("user.search", _indexed("constraints[phids]", chunk)):
                user = User.from_conduit(record)
                users[user.phid] = user
        return users

    # ── Transport ──────────────────────────────────────────────

    def _search(self, method: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Call a ``*.search`` method and follow its cursor to the end."""
        items: List[Dict[str, Any]] = []
        after = None

        while True:
            page = dict(params)
            page["limit"] = str(SEARCH_LIMIT)
            if after:
                page["after"] = str(after)

            result = self._call(method, page)
            if not isinstance(result, dict) or not isinstance(result.get("data"), list):
                raise DecodeError(f"Cannot parse {method} result {result!r}")

            items.extend(result["data"])
            after = (result.get("cursor") or {}).get("after")
            if not after:
                return items

    def _call(self, method: str, params: Dict[str, str]) -> Any:
        """POST a Conduit method and return its ``result`` payload."""
        url = f"{self.host}/api/{method}"
        log.debug("Calling %s %s", url, params)

        form = {"api.token": self._api_token}
        form.update(params)

        try:
            response = self._http.post(url, data=form)
        except httpx.TransportError as e:
            raise TransportError(f"Request to {url} failed: {e}")

        if response.status_code in (401, 403):
            raise UnauthorizedError(f"{method} rejected credentials (HTTP {response.status_code})")
        if not response.is_success:
            raise TransportError(f"{method} failed with HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise DecodeError(f"{method} returned invalid JSON: {e}")

        log.debug("Response %s", body)

        if not isinstance(body, dict):
            raise DecodeError(f"Cannot parse {method} response {body!r}")

        error_code = body.get("error_code")
        if error_code:
            info = body.get("error_info") or error_code
            if _is_auth_error(error_code, info):
                raise UnauthorizedError(f"{method}: {info}")
            raise DecodeError(f"{method}: {error_code}: {info}")

        if "result" not in body:
            raise DecodeError(f"{method} response has no result: {body!r}")
        return body["result"]


def _is_auth_error(error_code: str, info: str) -> bool:
    if error_code in AUTH_ERROR_CODES:
        return True
    # Bad tokens surface as ERR-CONDUIT-CORE on some installs
    return error_code == "ERR-CONDUIT-CORE" and "token" in str(info).lower()


def _indexed(key: str, values: Iterable[str]) -> Dict[str, str]:
    """Encode a list the way Conduit expects: key[0]=a, key[1]=b, ..."""
    return {f"{key}[{i}]": value for i, value in enumerate(values)}


def _chunks(values: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
