"""
Unpack fetched archives and map their contents to tables.

Data archives hold one pipe-delimited flat file per table, named after the
table. Schema archives hold one or more .sql files of CREATE TABLE
statements (alongside documentation that is ignored).
"""

import re
import shutil
import zipfile
from pathlib import Path

import structlog

from feed_loader.errors import TransportError

log = structlog.get_logger()

CREATE_TABLE = re.compile(
    r"^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?[`\"\[]?([\w.]+)[`\"\]]?",
    re.IGNORECASE,
)


def unpack_archive(archive: Path, dest_dir: Path) -> list[Path]:
    """
    Extract every file of a zip archive into dest_dir.

    Directory members are created but not returned. Members whose path
    would land outside dest_dir are refused.

    Args:
        archive: Local zip file
        dest_dir: Directory to extract into (created if missing)

    Returns:
        Paths of the extracted files, in archive order

    Raises:
        TransportError: If the archive is corrupt or unsafe
    """
    dest_dir = Path(dest_dir).resolve()
    dest_dir.mkdir(parents=True, exist_ok=True)
    extracted = []

    try:
        with zipfile.ZipFile(archive) as zf:
            for member in zf.infolist():
                target = (dest_dir / member.filename).resolve()
                if not target.is_relative_to(dest_dir):
                    raise TransportError(
                        f"Archive member {member.filename} escapes {dest_dir}",
                        path=str(archive),
                    )

                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(member) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                extracted.append(target)
    except (zipfile.BadZipFile, OSError) as e:
        raise TransportError(f"Could not unpack {archive}: {e}", path=str(archive)) from e

    log.debug("archive_unpacked", archive=str(archive), dest=str(dest_dir), files=len(extracted))
    return extracted


def table_name_for(path: Path) -> str:
    """
    Derive the destination table from a flat file name.

    Example:
        "/vol/feeds/ppl_premium/ppl_names.txt" -> "ppl_names"
    """
    return Path(path).stem


def split_statements(sql: str) -> list[str]:
    """Split a DDL script on ";", dropping "--" comment lines and empty statements."""
    statements = []
    for chunk in sql.split(";"):
        lines = [line for line in chunk.splitlines() if not line.strip().startswith("--")]
        statement = "\n".join(lines).strip()
        if statement:
            statements.append(statement)
    return statements


def created_table_name(statement: str) -> str | None:
    """Table created by a CREATE TABLE statement, or None for anything else."""
    match = CREATE_TABLE.match(statement)
    return match.group(1) if match else None
