"""Input sanitization for uploaded EDI files."""

import re

# Extensions clearinghouses commonly use for X12 files
EDI_FILE_EXTENSIONS = {".edi", ".835", ".837", ".txt", ".x12", ".era", ".dat"}


def sanitize_filename(filename: str | None, max_length: int = 255) -> str:
    """Sanitize a user-provided filename for safe logging.

    Strips directory components, parent references and control characters,
    and truncates long names while keeping the extension.

    Args:
        filename: The raw filename from the upload
        max_length: Maximum allowed filename length

    Returns:
        A safe filename string
    """
    if not filename:
        return "unknown"

    safe_name = filename.replace("\\", "/").split("/")[-1]
    safe_name = safe_name.replace("..", "")
    safe_name = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", safe_name)

    if len(safe_name) > max_length:
        if "." in safe_name:
            name, ext = safe_name.rsplit(".", 1)
            ext = ext[:10]
            safe_name = name[: max_length - len(ext) - 1] + "." + ext
        else:
            safe_name = safe_name[:max_length]

    return safe_name or "unknown"


def has_edi_extension(filename: str) -> bool:
    """True when the name carries a known EDI extension, or none at all."""
    if "." not in filename:
        return True
    return "." + filename.rsplit(".", 1)[-1].lower() in EDI_FILE_EXTENSIONS


def decode_edi_bytes(content: bytes) -> str:
    """Decode uploaded X12 bytes, tolerating a BOM and non-UTF-8 payers.

    X12 restricts content to a basic character set, so Latin-1 is a safe
    fallback when UTF-8 decoding fails.
    """
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")
