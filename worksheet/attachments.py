# worksheet/attachments.py
from __future__ import annotations

import base64
import mimetypes
import os
import re
from typing import Dict, FrozenSet, Optional, Tuple

from worksheet.errors import AttachmentTypeError, EmptyFileError, InputFormatError
from worksheet.models import Attachment

# -------------------------
# Validation knobs
# -------------------------
MAX_ATTACHMENT_BYTES = int(os.getenv("WORKSHEET_MAX_ATTACHMENT_BYTES", str(25 * 1024 * 1024)))

_PDF_MAGIC = b"%PDF-"

SLOT_RULES: Dict[str, Tuple[FrozenSet[str], str]] = {
    # slot -> (allowed mimes, label shown when rejected)
    "Chart": (frozenset({"application/pdf"}), ".pdf"),
    "Extracted Summary": (frozenset({"application/pdf", "text/html"}), ".pdf,.html"),
}

_GENERIC_MIMES = {"", "application/octet-stream", "binary/octet-stream"}
_EXT_MIMES = {
    ".pdf": "application/pdf",
    ".html": "text/html",
    ".htm": "text/html",
}

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


def _sanitize_filename(filename: str) -> str:
    """
    Prevent path traversal and strip control chars.
    Keeps a user-friendly base name.
    """
    fn = (filename or "").strip()
    fn = os.path.basename(fn.replace("\\", "/"))
    fn = fn.replace("\x00", "")
    fn = re.sub(r"[\r\n\t]+", " ", fn).strip()
    fn = re.sub(r"\s{2,}", " ", fn).strip()
    if not fn:
        fn = "upload"
    if len(fn) > 180:
        root, ext = os.path.splitext(fn)
        fn = root[:160] + ext[:20]
    return fn


def _ext_of(filename: str) -> str:
    return os.path.splitext((filename or "").lower().strip())[1]


def resolve_mime(filename: str, declared_mime: str) -> str:
    """Declared type wins unless it is missing or generic; then go by extension."""
    mt = (declared_mime or "").split(";")[0].strip().lower()
    if mt not in _GENERIC_MIMES:
        return mt
    ext = _ext_of(filename)
    return _EXT_MIMES.get(ext) or (mimetypes.guess_type(filename or "")[0] or "")


def check_slot(slot: str) -> Tuple[FrozenSet[str], str]:
    try:
        return SLOT_RULES[slot]
    except KeyError:
        raise InputFormatError(f"Unknown attachment column: {slot}") from None


def build_attachment(slot: str, filename: str, declared_mime: str, data: bytes) -> Attachment:
    """
    Validate an upload for a slot and turn it into a storable reference.
    Raises AttachmentTypeError before anything is stored.
    """
    allowed, label = check_slot(slot)
    fn = _sanitize_filename(filename)
    b = data or b""
    if not b:
        raise EmptyFileError(fn)
    if len(b) > MAX_ATTACHMENT_BYTES:
        raise InputFormatError(f"File too large (max {MAX_ATTACHMENT_BYTES} bytes)")

    mime = resolve_mime(fn, declared_mime)
    if mime not in allowed:
        raise AttachmentTypeError(slot, label)
    if mime == "application/pdf" and not b.startswith(_PDF_MAGIC):
        raise AttachmentTypeError(slot, label)

    encoded = base64.b64encode(b).decode("ascii")
    return Attachment(name=fn, data_url=f"data:{mime};base64,{encoded}")


def decode_data_url(data_url: str) -> Optional[Tuple[str, bytes]]:
    """data: URL -> (mime, bytes); None when it is not a data URL we can read."""
    m = _DATA_URL_RE.match(data_url or "")
    if not m:
        return None
    mime = m.group("mime") or "application/octet-stream"
    payload = m.group("data")
    if m.group("b64"):
        try:
            return mime, base64.b64decode(payload, validate=False)
        except ValueError:
            return None
    return mime, payload.encode("utf-8")


def open_mode(slot: str, attachment: Attachment) -> str:
    """How a client should show the file: "modal" for PDFs, "tab" otherwise."""
    name = attachment.name.lower()
    if slot == "Chart" or name.endswith(".pdf"):
        return "modal"
    return "tab"
