import io
import json
import logging
import mimetypes
import os
import tempfile
from contextlib import closing, suppress
from typing import Any, BinaryIO, Dict, Iterator, Optional, Union

import requests
from requests.utils import quote, unquote

from src.core.config import settings
from src.core.exceptions import (
    ApiError,
    ConfigurationError,
    DecodeError,
    InvalidArgumentError,
    IOFailureError,
    TransportError,
)
from src.core.models import (
    ClientConfig,
    ConflictBehavior,
    parse_conflict_behavior,
    parse_link_type,
)
from src.utils.multipart import build_related_body

logger = logging.getLogger(__name__)

BASE_URL = "https://api.onedrive.com/v1.0"
JSON_CONTENT_TYPE = "application/json"
DOWNLOAD_CHUNK_SIZE = 8000

# Keyword arguments requests.Session.send accepts
SEND_OPTIONS = frozenset({"timeout", "verify", "stream", "cert", "proxies", "allow_redirects"})

# Left unencoded when a path is percent-encoded as a whole
PATH_SAFE_CHARS = "/:!"


class OneDriveClient:
    """
    OneDrive REST API client.

    Every operation builds a path under the selected drive, sends it through
    the injected transport (a requests.Session by default) and returns the
    decoded JSON response. Failures are raised as OneDriveError subclasses.
    """
    def __init__(
        self,
        access_token: str,
        session: Optional[requests.Session] = None,
        content_type: str = JSON_CONTENT_TYPE,
        default_options: Optional[Dict[str, Any]] = None,
        drive_id: str = "me",
        conflict_behavior: Union[str, ConflictBehavior] = ConflictBehavior.RENAME,
        download_chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ):
        if not access_token:
            raise InvalidArgumentError("An access token is required")

        self.session = session if session is not None else requests.Session()
        self.config = ClientConfig(
            access_token=access_token,
            content_type=content_type,
            default_options=self._check_options(default_options),
            selected_drive=drive_id or "me",
            conflict_behavior=parse_conflict_behavior(conflict_behavior),
            download_chunk_size=self._check_chunk_size(download_chunk_size),
        )

    @classmethod
    def from_settings(cls, config=None, session: Optional[requests.Session] = None) -> "OneDriveClient":
        """Build a client from environment settings."""
        config = config or settings
        if not config.ONEDRIVE_ACCESS_TOKEN:
            raise ConfigurationError("ONEDRIVE_ACCESS_TOKEN is not set")
        return cls(
            config.ONEDRIVE_ACCESS_TOKEN,
            session=session,
            content_type=config.ONEDRIVE_CONTENT_TYPE,
            default_options=config.DEFAULT_OPTIONS,
            drive_id=config.ONEDRIVE_DRIVE_ID,
            conflict_behavior=config.ONEDRIVE_CONFLICT_BEHAVIOR,
            download_chunk_size=config.ONEDRIVE_DOWNLOAD_CHUNK_SIZE,
        )

    # -----------------------
    # Configuration
    # -----------------------

    @property
    def base_url(self) -> str:
        return BASE_URL

    @property
    def access_token(self) -> str:
        return self.config.access_token

    @access_token.setter
    def access_token(self, value: str):
        if not value:
            raise InvalidArgumentError("An access token is required")
        self.config.access_token = value

    @property
    def content_type(self) -> str:
        return self.config.content_type

    @content_type.setter
    def content_type(self, value: str):
        """Persistent default Content-Type for subsequent requests."""
        self.config.content_type = value

    @property
    def default_options(self) -> Dict[str, Any]:
        return self.config.default_options

    @default_options.setter
    def default_options(self, value: Dict[str, Any]):
        self.config.default_options = self._check_options(value)

    @property
    def download_chunk_size(self) -> int:
        return self.config.download_chunk_size

    @download_chunk_size.setter
    def download_chunk_size(self, value: int):
        self.config.download_chunk_size = self._check_chunk_size(value)

    @property
    def conflict_behavior(self) -> ConflictBehavior:
        return self.config.conflict_behavior

    @conflict_behavior.setter
    def conflict_behavior(self, value: Union[str, ConflictBehavior]):
        self.config.conflict_behavior = parse_conflict_behavior(value)

    @property
    def selected_drive(self) -> str:
        return self.config.selected_drive

    def select_drive(self, drive_id: Optional[str]) -> "OneDriveClient":
        """Select the drive later operations run against. Empty ids are ignored."""
        if drive_id:
            self.config.selected_drive = drive_id
        return self

    # -----------------------
    # Request building
    # -----------------------

    def get_drive_path(self, drive_id: Optional[str] = None) -> str:
        drive_id = drive_id or self.selected_drive
        return f"/drives/{drive_id}"

    def build_url(self, path: str = "") -> str:
        """Percent-encode the whole path (keeping '/', ':' and '!') and prefix the base URL."""
        return f"{BASE_URL}{quote(path, safe=PATH_SAFE_CHARS)}"

    def build_headers(
        self,
        overrides: Optional[Dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Default auth and Content-Type headers with per-call overrides on top.
        Overrides only apply to the request being built.
        """
        headers = {
            "Authorization": f"bearer {self.access_token}",
            "Content-Type": content_type or self.content_type,
        }
        if overrides:
            headers.update(overrides)
        return headers

    def build_options(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Client default send options, per-call options win on collisions."""
        options = dict(self.default_options)
        if overrides:
            options.update(overrides)
        return self._check_options(options)

    @staticmethod
    def _check_options(options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Copy of options, rejecting keys the transport's send() does not take."""
        options = dict(options or {})
        unknown = sorted(set(options) - SEND_OPTIONS)
        if unknown:
            allowed = ", ".join(sorted(SEND_OPTIONS))
            raise InvalidArgumentError(f"Unsupported request options {unknown}, expected any of: {allowed}")
        return options

    @staticmethod
    def _check_chunk_size(value: int) -> int:
        if value <= 0:
            raise InvalidArgumentError("chunk_size must be positive")
        return value

    @staticmethod
    def _require_id(value: Optional[str], name: str = "item_id") -> str:
        if not value:
            raise InvalidArgumentError(f"{name} cannot be empty")
        return value

    def _item_path(self, item_id: Optional[str] = None, drive_id: Optional[str] = None) -> str:
        """Path of an item, or of the drive root when item_id is None."""
        drive_path = self.get_drive_path(drive_id)
        if item_id is None:
            return f"{drive_path}/root"
        self._require_id(item_id)
        return f"{drive_path}/items/{item_id}"

    # -----------------------
    # Dispatch & decoding
    # -----------------------

    def send_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Union[str, bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
        authenticate: bool = True,
    ) -> requests.Response:
        """Send one request through the session and return the raw response."""
        request_headers = self.build_headers(headers, content_type=content_type)
        if not authenticate:
            request_headers.pop("Authorization", None)

        request = requests.Request(
            method,
            url,
            headers=request_headers,
            params=params or None,
            data=body,
        )
        send_options = self.build_options(options)

        logger.debug(f"{method} {url}")
        try:
            prepared = self.session.prepare_request(request)
            response = self.session.send(prepared, **send_options)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            text = e.response.text if e.response is not None else None
            logger.error(f"OneDrive API returned {status} for {method} {url}")
            raise ApiError(
                f"OneDrive API error {status} for {method} {url}: {text}",
                status_code=status,
                body=text,
            ) from e
        except requests.RequestException as e:
            logger.error(f"Request {method} {url} failed: {e}")
            raise TransportError(f"Request {method} {url} failed: {e}") from e

        return response

    def decode_response(self, response: Union[requests.Response, str, bytes]) -> Any:
        """Decode a response (or a raw body) as JSON. An empty body decodes to None."""
        body = response
        if isinstance(response, requests.Response):
            body = response.content

        if not body or not body.strip():
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            logger.error(f"Failed to decode response body: {e}")
            raise DecodeError(f"Response body is not valid JSON: {e}") from e

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.send_request("GET", self.build_url(path), params=params)
        return self.decode_response(response)

    def _send_json(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        return self.send_request(
            method,
            self.build_url(path),
            params=params,
            body=json.dumps(payload),
            headers=headers,
            content_type=JSON_CONTENT_TYPE,
        )

    # -----------------------
    # Drives
    # -----------------------

    def list_drives(self, params: Optional[Dict[str, Any]] = None) -> Any:
        """List the drives available to the signed-in user."""
        logger.info("Listing drives")
        return self._get("/drives", params)

    def get_drive(self, drive_id: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """Get drive metadata. None means the selected drive."""
        logger.info(f"Fetching drive {drive_id or self.selected_drive}")
        return self._get(self.get_drive_path(drive_id), params)

    def get_default_drive(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.get_drive(None, params)

    def get_drive_root(self, drive_id: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """Get the root folder of a drive."""
        logger.info(f"Fetching root of drive {drive_id or self.selected_drive}")
        return self._get(self._item_path(None, drive_id), params)

    def get_special_folder(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Get a special folder (documents, photos, cameraroll, approot, music)."""
        self._require_id(name, "name")
        logger.info(f"Fetching special folder {name}")
        return self._get(f"{self.get_drive_path()}/special/{name}", params)

    def list_recent(self, params: Optional[Dict[str, Any]] = None) -> Any:
        logger.info("Listing recent items")
        return self._get(f"{self.get_drive_path()}/view.recent", params)

    def list_shared_with_me(self, params: Optional[Dict[str, Any]] = None) -> Any:
        logger.info("Listing items shared with me")
        return self._get(f"{self.get_drive_path()}/view.sharedWithMe", params)

    # -----------------------
    # Items
    # -----------------------

    def list_children(self, item_id: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """List the children of a folder, or of the drive root when item_id is None."""
        logger.info(f"Listing children of {item_id or 'root'}")
        return self._get(f"{self._item_path(item_id)}/children", params)

    def get_item(
        self,
        item_id: str,
        with_children: bool = False,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Get metadata for an item by its id.

        :param item_id: The item id
        :param with_children: Also expand the item's children
        :param params: Additional query parameters
        """
        self._require_id(item_id)
        params = dict(params or {})
        if with_children:
            expand = params.get("expand")
            if not expand:
                params["expand"] = "children"
            elif "children" not in expand:
                params["expand"] = f"{expand},children"

        logger.info(f"Fetching item {item_id}")
        return self._get(self._item_path(item_id), params)

    def get_item_by_path(
        self,
        path: str,
        drive_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Get metadata for an item addressed by its path from the drive root."""
        if not path or not path.startswith("/"):
            raise InvalidArgumentError(f"Item path must start with '/': {path!r}")

        logger.info(f"Fetching item at path {path}")
        root_path = self._item_path(None, drive_id)
        path = path.rstrip("/")
        if not path:
            return self._get(root_path, params)
        return self._get(f"{root_path}:{path}", params)

    def search(
        self,
        query: str,
        item_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Search the drive root, or a given folder, for items matching query."""
        query = unquote(query or "").strip()
        if not query:
            raise InvalidArgumentError("Search query cannot be empty")

        params = dict(params or {})
        params["q"] = query
        logger.info(f"Searching {item_id or 'root'} for '{query}'")
        return self._get(f"{self._item_path(item_id)}/view.search", params)

    def list_thumbnails(self, item_id: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._require_id(item_id)
        logger.info(f"Listing thumbnails of item {item_id}")
        return self._get(f"{self._item_path(item_id)}/thumbnails", params)

    def get_thumbnail(
        self,
        item_id: str,
        thumbnail_id: str = "0",
        size: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Get one thumbnail set of an item, optionally narrowed to a size (small, medium, large)."""
        self._require_id(item_id)
        self._require_id(thumbnail_id, "thumbnail_id")

        path = f"{self._item_path(item_id)}/thumbnails/{thumbnail_id}"
        if size:
            path = f"{path}/{size}"
        logger.info(f"Fetching thumbnail {thumbnail_id} of item {item_id}")
        return self._get(path, params)

    # -----------------------
    # Download
    # -----------------------

    def _resolve_chunk_size(self, chunk_size: Optional[int]) -> int:
        if chunk_size is None:
            return self.download_chunk_size
        return self._check_chunk_size(chunk_size)

    def _open_download(self, item_id: str, options: Optional[Dict[str, Any]] = None) -> requests.Response:
        """
        Resolve an item's pre-authenticated @content.downloadUrl and open it
        as a streamed GET without the bearer header.
        """
        item = self.get_item(item_id)
        download_url = item.get("@content.downloadUrl") if isinstance(item, dict) else None
        if not download_url:
            raise InvalidArgumentError(f"Item {item_id} has no downloadable content")

        stream_options = dict(options or {})
        stream_options["stream"] = True

        logger.info(f"Downloading item {item_id}")
        return self.send_request("GET", download_url, options=stream_options, authenticate=False)

    def _iter_chunks(self, response: requests.Response, chunk_size: int, item_id: str) -> Iterator[bytes]:
        with closing(response):
            try:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        yield chunk
            except requests.RequestException as e:
                logger.error(f"Download of item {item_id} interrupted: {e}")
                raise TransportError(f"Download of item {item_id} interrupted: {e}") from e

    def stream_item(
        self,
        item_id: str,
        chunk_size: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Iterator[bytes]:
        """
        Open an item's content and return an iterator over its chunks.

        Metadata and connection errors are raised here, before iteration
        starts. The response is closed once the iterator is exhausted or closed.
        """
        chunk_size = self._resolve_chunk_size(chunk_size)
        response = self._open_download(item_id, options)
        return self._iter_chunks(response, chunk_size, item_id)

    def _write_chunks(self, item_id: str, chunks: Iterator[bytes], target: BinaryIO) -> int:
        written = 0
        with closing(chunks):
            for chunk in chunks:
                try:
                    target.write(chunk)
                except OSError as e:
                    logger.error(f"Failed to write item {item_id}: {e}")
                    raise IOFailureError(f"Failed to write item {item_id}: {e}") from e
                written += len(chunk)
        return written

    def download_item(
        self,
        item_id: str,
        destination: Optional[BinaryIO] = None,
        chunk_size: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> BinaryIO:
        """
        Stream an item's content into destination.

        Without a destination the content lands in a BytesIO which is
        returned rewound. chunk_size defaults to the client's
        download_chunk_size.
        """
        chunks = self.stream_item(item_id, chunk_size, options)
        target = destination if destination is not None else io.BytesIO()

        written = self._write_chunks(item_id, chunks, target)

        logger.info(f"Downloaded {written} bytes of item {item_id}")
        if destination is None:
            target.seek(0)
        return target

    def download_to_file(self, item_id: str, path: str, chunk_size: Optional[int] = None) -> str:
        """
        Download an item into a local file and return its path.

        Content goes to a temporary file beside path which replaces path only
        once the download completed, so an existing file survives any failure.
        """
        self._require_id(item_id)
        self._resolve_chunk_size(chunk_size)

        directory = os.path.dirname(os.path.abspath(path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".download-", dir=directory)
        except OSError as e:
            raise IOFailureError(f"Cannot create a temporary file in {directory}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as handle:
                chunks = self.stream_item(item_id, chunk_size)
                written = self._write_chunks(item_id, chunks, handle)
            try:
                os.replace(tmp_path, path)
            except OSError as e:
                raise IOFailureError(f"Cannot move download into {path}: {e}") from e
        except BaseException:
            with suppress(OSError):
                os.remove(tmp_path)
            raise

        logger.info(f"Saved {written} bytes of item {item_id} to {path}")
        return path

    # -----------------------
    # Mutations
    # -----------------------

    def create_folder(
        self,
        name: str,
        parent_id: Optional[str] = None,
        conflict_behavior: Optional[Union[str, ConflictBehavior]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Create a folder under parent_id, or under the drive root."""
        behavior = parse_conflict_behavior(
            conflict_behavior if conflict_behavior is not None else self.conflict_behavior
        )
        if not name or not name.strip():
            raise InvalidArgumentError("Folder name cannot be empty")

        payload = {
            "name": name,
            "@name.conflictBehavior": behavior.value,
            "folder": {},
        }
        logger.info(f"Creating folder '{name}' in {parent_id or 'root'}")
        response = self._send_json("POST", f"{self._item_path(parent_id)}/children", payload, params=params)
        return self.decode_response(response)

    def upload_file(
        self,
        file_path: str,
        title: Optional[str] = None,
        parent_id: Optional[str] = None,
        conflict_behavior: Optional[Union[str, ConflictBehavior]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Upload a local file as a multipart/related request.

        The multipart Content-Type is passed for this request only, the
        client's stored content type is never touched.
        """
        behavior = parse_conflict_behavior(
            conflict_behavior if conflict_behavior is not None else self.conflict_behavior
        )
        if not file_path or not os.path.isfile(file_path):
            raise InvalidArgumentError(f"File not found: {file_path}")

        title = title or os.path.basename(file_path)
        path = f"{self._item_path(parent_id)}/children"
        mime_type = mimetypes.guess_type(file_path)[0] or "application/octet-stream"

        try:
            with open(file_path, "rb") as f:
                content = f.read()
        except OSError as e:
            raise IOFailureError(f"Failed to read {file_path}: {e}") from e

        metadata = {
            "name": title,
            "@name.conflictBehavior": behavior.value,
            "file": {},
            "@content.sourceUrl": "cid:content",
        }
        body, content_type = build_related_body(metadata, content, mime_type)

        logger.info(f"Uploading '{file_path}' as '{title}' to {parent_id or 'root'}")
        response = self.send_request(
            "POST",
            self.build_url(path),
            params=params,
            body=body,
            content_type=content_type,
        )
        return self.decode_response(response)

    def update_item(
        self,
        item_id: str,
        changes: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """PATCH an item's metadata with the given changes."""
        self._require_id(item_id)
        if not changes:
            raise InvalidArgumentError("No changes given for item update")

        logger.info(f"Updating item {item_id}")
        response = self._send_json("PATCH", self._item_path(item_id), changes, params=params)
        return self.decode_response(response)

    def move_item(self, item_id: str, parent_id: str, name: Optional[str] = None) -> Any:
        self._require_id(parent_id, "parent_id")
        changes: Dict[str, Any] = {"parentReference": {"id": parent_id}}
        if name:
            changes["name"] = name
        return self.update_item(item_id, changes)

    def copy_item(self, item_id: str, parent_id: str, name: Optional[str] = None) -> Optional[str]:
        """
        Start an async server-side copy.

        :return: The monitor URL from the Location header, if the API sent one
        """
        self._require_id(item_id)
        self._require_id(parent_id, "parent_id")

        payload: Dict[str, Any] = {"parentReference": {"id": parent_id}}
        if name:
            payload["name"] = name

        logger.info(f"Copying item {item_id} to {parent_id}")
        response = self._send_json(
            "POST",
            f"{self._item_path(item_id)}/action.copy",
            payload,
            headers={"Prefer": "respond-async"},
        )
        return response.headers.get("Location")

    def delete_item(self, item_id: str) -> bool:
        self._require_id(item_id)
        logger.info(f"Deleting item {item_id}")
        self.send_request("DELETE", self.build_url(self._item_path(item_id)))
        return True

    def create_link(self, item_id: str, link_type: str = "view") -> Any:
        """Create a sharing link (view, edit or embed) for an item."""
        self._require_id(item_id)
        link = parse_link_type(link_type)

        logger.info(f"Creating {link.value} link for item {item_id}")
        response = self._send_json(
            "POST",
            f"{self._item_path(item_id)}/action.createLink",
            {"type": link.value},
        )
        return self.decode_response(response)
