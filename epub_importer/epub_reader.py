from __future__ import annotations

import io
import logging
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping
from urllib.parse import unquote

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
TEXT_DOCUMENT_EXTENSIONS = (".xhtml", ".html", ".htm")
ARCHIVE_MAX_ENTRY_SIZE_BYTES = 50 * 1024 * 1024
ARCHIVE_MAX_TOTAL_UNCOMPRESSED_BYTES = 200 * 1024 * 1024
ARCHIVE_MAX_COMPRESSION_RATIO = 200
ARCHIVE_RATIO_CHECK_MIN_BYTES = 1024 * 1024

# Tag scanning is deliberately regex based: OPF and container documents in the
# wild disagree on namespace prefixes, quoting and self-closing conventions.
_ATTRIBUTE_PATTERN = re.compile(
    r"""([^\s=<>/"']+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'<>=`]+))""",
)
_ROOTFILE_PATTERN = re.compile(r"<\s*(?:[\w.-]+:)?rootfile\b([^>]*)>", re.IGNORECASE)
_MANIFEST_ITEM_PATTERN = re.compile(r"<\s*(?:[\w.-]+:)?item\b([^>]*)>", re.IGNORECASE)
_SPINE_ITEMREF_PATTERN = re.compile(r"<\s*(?:[\w.-]+:)?itemref\b([^>]*)>", re.IGNORECASE)
_XML_ATTRIBUTE_ENTITIES = (
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
)


class EpubStructureError(ValueError):
    """Raised when an upload cannot be resolved into readable EPUB documents."""


class ArchiveDecodeError(EpubStructureError):
    pass


class MissingContainer(EpubStructureError):
    pass


class MissingPackagePath(EpubStructureError):
    pass


class MissingPackageDocument(EpubStructureError):
    pass


class NoTextDocuments(EpubStructureError):
    pass


@dataclass(frozen=True)
class EpubArchive:
    entries: Mapping[str, bytes]
    warnings: tuple[str, ...] = ()

    def __contains__(self, path: object) -> bool:
        return path in self.entries

    def read(self, path: str) -> bytes:
        return self.entries[path]

    def paths(self) -> list[str]:
        return list(self.entries)


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    href: str
    media_type: str | None = None


@dataclass(frozen=True)
class SpineEntry:
    idref: str


@dataclass(frozen=True)
class PackageDocument:
    path: str
    manifest: dict[str, ManifestEntry]
    spine: list[SpineEntry]

    @property
    def base_dir(self) -> str:
        return package_base_dir(self.path)


@dataclass(frozen=True)
class ReadingOrderResult:
    paths: list[str]
    package_path: str
    used_fallback: bool = False
    warnings: list[str] = field(default_factory=list)


def _is_unsafe_archive_name(name: str) -> bool:
    normalized = name.replace("\\", "/")
    if normalized.startswith("/"):
        return True
    parts = [segment for segment in normalized.split("/") if segment]
    return any(segment == ".." for segment in parts)


def read_archive(content_bytes: bytes) -> EpubArchive:
    """Decode uploaded zip bytes into an immutable path -> bytes mapping.

    Entries that trip the size, ratio or path guards are skipped and reported
    as warnings instead of failing the whole upload.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(content_bytes))
    except (zipfile.BadZipFile, zlib.error, OSError, ValueError) as exc:
        raise ArchiveDecodeError(f"Upload is not a readable EPUB archive: {exc}") from exc

    entries: dict[str, bytes] = {}
    warnings: list[str] = []
    total_uncompressed_bytes = 0

    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            safe_name = info.filename.replace("\\", "/")

            if _is_unsafe_archive_name(info.filename):
                warnings.append(f"Blocked unsafe archive entry path: {safe_name}")
                continue

            if info.flag_bits & 0x1:
                warnings.append(f"Archive entry '{safe_name}' is password protected and was skipped.")
                continue

            if info.file_size > ARCHIVE_MAX_ENTRY_SIZE_BYTES:
                warnings.append(f"Blocked oversized archive entry '{safe_name}'.")
                continue

            if (
                info.file_size > ARCHIVE_RATIO_CHECK_MIN_BYTES
                and info.compress_size > 0
                and (info.file_size / info.compress_size) > ARCHIVE_MAX_COMPRESSION_RATIO
            ):
                warnings.append(f"Blocked suspicious compression ratio for '{safe_name}'.")
                continue

            if (total_uncompressed_bytes + info.file_size) > ARCHIVE_MAX_TOTAL_UNCOMPRESSED_BYTES:
                warnings.append(f"Blocked archive entry '{safe_name}' due to total uncompressed-size guard.")
                continue

            try:
                member_bytes = archive.read(info)
            except NotImplementedError:
                warnings.append(f"Archive entry '{safe_name}' uses an unsupported compression method and was skipped.")
                continue
            except RuntimeError:
                warnings.append(f"Archive entry '{safe_name}' requires a password and was skipped.")
                continue
            except (zipfile.BadZipFile, zlib.error, OSError):
                warnings.append(f"Archive entry '{safe_name}' appears corrupt and was skipped.")
                continue

            entries[safe_name] = member_bytes
            total_uncompressed_bytes += info.file_size

    for warning in warnings:
        logger.warning("EPUB archive: %s", warning)

    return EpubArchive(entries=MappingProxyType(entries), warnings=tuple(warnings))


def _decode_attribute_value(value: str) -> str:
    for entity, replacement in _XML_ATTRIBUTE_ENTITIES:
        value = value.replace(entity, replacement)
    return value


def tag_attributes(tag_body: str) -> dict[str, str]:
    """Extract attributes from the inside of a start tag.

    Attribute names are lower-cased and namespace prefixes kept; order,
    quoting style and unknown attributes do not matter.
    """
    attributes: dict[str, str] = {}
    for match in _ATTRIBUTE_PATTERN.finditer(tag_body):
        name = match.group(1).lower()
        raw_value = next(
            (group for group in match.group(2, 3, 4) if group is not None),
            "",
        )
        attributes[name] = _decode_attribute_value(raw_value)
    return attributes


def is_text_document(path: str) -> bool:
    return path.lower().endswith(TEXT_DOCUMENT_EXTENSIONS)


def find_container_entry(archive: EpubArchive) -> str:
    suffix = CONTAINER_PATH.lower()
    if CONTAINER_PATH in archive:
        return CONTAINER_PATH
    candidates = sorted(path for path in archive.paths() if path.lower().endswith(suffix))
    if not candidates:
        raise MissingContainer(f"EPUB is missing {CONTAINER_PATH}.")
    return candidates[0]


def resolve_package_path(archive: EpubArchive) -> str:
    """Return the OPF path named by container.xml, verbatim."""
    container_path = find_container_entry(archive)
    container_text = archive.read(container_path).decode("utf-8", errors="replace")

    for match in _ROOTFILE_PATTERN.finditer(container_text):
        full_path = tag_attributes(match.group(1)).get("full-path")
        if full_path:
            return full_path

    raise MissingPackagePath(f"{container_path} does not declare a rootfile full-path.")


def package_base_dir(package_path: str) -> str:
    if "/" not in package_path:
        return ""
    return package_path.rsplit("/", 1)[0]


def normalize_path(base_dir: str, href: str) -> str:
    """Resolve href against base_dir using pure path algebra.

    Fragment identifiers are dropped, empty and `.` segments removed, and `..`
    pops the previous segment (no-op at the root). Never consults the archive.
    """
    href = href.split("#", 1)[0]
    joined = f"{base_dir}/{href}" if base_dir else href

    stack: list[str] = []
    for segment in joined.split("/"):
        if not segment or segment == ".":
            continue
        if segment == "..":
            if stack:
                stack.pop()
            continue
        stack.append(segment)
    return "/".join(stack)


def parse_package_document(package_path: str, opf_text: str) -> PackageDocument:
    manifest: dict[str, ManifestEntry] = {}
    for match in _MANIFEST_ITEM_PATTERN.finditer(opf_text):
        attributes = tag_attributes(match.group(1))
        item_id = attributes.get("id")
        href = attributes.get("href")
        if not item_id or href is None:
            continue
        # Last declaration wins on duplicate ids.
        manifest[item_id] = ManifestEntry(
            id=item_id,
            href=href,
            media_type=attributes.get("media-type"),
        )

    spine: list[SpineEntry] = []
    for match in _SPINE_ITEMREF_PATTERN.finditer(opf_text):
        idref = tag_attributes(match.group(1)).get("idref")
        if idref:
            spine.append(SpineEntry(idref=idref))

    return PackageDocument(path=package_path, manifest=manifest, spine=spine)


def _read_package_text(archive: EpubArchive, package_path: str) -> str:
    if package_path in archive:
        return archive.read(package_path).decode("utf-8", errors="replace")

    lowered = package_path.lower()
    for path in sorted(archive.paths()):
        if path.lower() == lowered:
            return archive.read(path).decode("utf-8", errors="replace")

    raise MissingPackageDocument(f"Package document '{package_path}' was not found in the EPUB.")


def _resolve_manifest_href(archive: EpubArchive, base_dir: str, href: str) -> str | None:
    candidate = normalize_path(base_dir, href)
    if candidate in archive:
        return candidate
    decoded = normalize_path(base_dir, unquote(href))
    if decoded in archive:
        return decoded
    return None


def spine_reading_order(archive: EpubArchive, package: PackageDocument) -> list[str]:
    reading_order: list[str] = []
    seen: set[str] = set()
    base_dir = package.base_dir

    for entry in package.spine:
        item = package.manifest.get(entry.idref)
        if item is None:
            logger.debug("Dropping spine itemref '%s': not in manifest", entry.idref)
            continue
        if not is_text_document(normalize_path(base_dir, item.href)):
            logger.debug("Dropping spine itemref '%s': not a text document (%s)", entry.idref, item.href)
            continue
        resolved = _resolve_manifest_href(archive, base_dir, item.href)
        if resolved is None:
            logger.debug("Dropping spine itemref '%s': %s missing from archive", entry.idref, item.href)
            continue
        if resolved in seen:
            continue
        seen.add(resolved)
        reading_order.append(resolved)

    return reading_order


def parse_package(archive: EpubArchive, package_path: str) -> list[str]:
    """Read the OPF at package_path and return its spine as archive paths (possibly empty)."""
    package = parse_package_document(package_path, _read_package_text(archive, package_path))
    return spine_reading_order(archive, package)


def fallback_reading_order(archive: EpubArchive) -> list[str]:
    paths = sorted(path for path in archive.paths() if is_text_document(path))
    if not paths:
        raise NoTextDocuments("No XHTML/HTML documents were found in the EPUB.")
    return paths


def resolve_reading_order(archive: EpubArchive) -> ReadingOrderResult:
    package_path = resolve_package_path(archive)
    paths = parse_package(archive, package_path)
    if paths:
        return ReadingOrderResult(paths=paths, package_path=package_path)

    logger.warning("Spine of %s resolved no text documents; using sorted archive order", package_path)
    return ReadingOrderResult(
        paths=fallback_reading_order(archive),
        package_path=package_path,
        used_fallback=True,
        warnings=["Spine did not resolve any text documents; fell back to sorted archive order."],
    )
