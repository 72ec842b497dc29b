"""
Concierge NAS Tool

Recycle-bin discovery, sizing and emptying plus free-space reporting for
the NAS shares. Works either against locally mounted share roots or, when
an SSH host is configured, by running small /bin/sh scripts on the NAS
through the system ssh client (key authentication, BatchMode).

Usage:
    from tools.nas import NasTool

    nas = NasTool(share_roots=["/share"])
    bins = await nas.discover_bins()
    summary = await nas.summarize_bin(bins[0].recycle_path)
    result = await nas.empty_bin(bins[0].recycle_path)
"""

import asyncio
import logging
import os
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

logger = logging.getLogger("concierge.nas")

RECYCLE_DIR = "@Recycle"


class NasCommandError(RuntimeError):
    """A remote NAS command exited non-zero or timed out."""


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class RecycleBin:
    """A recycle-bin directory and the share it belongs to."""
    share: str
    recycle_path: str

    def to_dict(self) -> dict[str, Any]:
        return {"share": self.share, "recycle_path": self.recycle_path}


@dataclass
class BinEntry:
    """One top-level entry inside a recycle bin."""
    name: str
    size_bytes: int = 0
    file_count: int = 0
    kind: str = "unknown"


@dataclass
class BinSummary:
    """Size and content summary of a recycle bin.

    Attributes:
        total_bytes: Combined size of everything in the bin.
        total_files: Number of regular files, recursively.
        entry_count: Number of top-level entries.
        entries: All top-level entries, largest first (local mode only).
        preview: The first few entries for display.
    """
    total_bytes: int = 0
    total_files: int = 0
    entry_count: int = 0
    entries: list[BinEntry] = field(default_factory=list)
    preview: list[BinEntry] = field(default_factory=list)


@dataclass
class EmptyResult:
    """Outcome of emptying one recycle bin.

    Attributes:
        removed: Top-level entries deleted.
        failed: Top-level entries that could not be deleted.
    """
    removed: int = 0
    failed: int = 0


@dataclass
class StorageStatus:
    """Disk usage of one share root."""
    path: str
    mount: str
    total_bytes: int
    used_bytes: int
    available_bytes: int
    used_percent: float


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_df_output(output: str) -> list[dict[str, str]]:
    """Parse POSIX `df -P` output into row dicts, skipping the header."""
    rows = []
    for line in output.strip().splitlines()[1:]:
        parts = line.split()
        if len(parts) < 6:
            continue
        filesystem, blocks, used, available, percent = parts[:5]
        rows.append({
            "filesystem": filesystem,
            "blocks": blocks,
            "used": used,
            "available": available,
            "percent": percent,
            "mount": " ".join(parts[5:]),
        })
    return rows


def _status_from_df(path: str, row: dict[str, str]) -> StorageStatus:
    return StorageStatus(
        path=path,
        mount=row["mount"],
        total_bytes=int(row["blocks"] or 0),
        used_bytes=int(row["used"] or 0),
        available_bytes=int(row["available"] or 0),
        used_percent=float(row["percent"].rstrip("%") or 0),
    )


def _walk_size(path: Path) -> tuple[int, int]:
    """Total bytes and file count below path (a file counts as one)."""
    if path.is_symlink() or not path.is_dir():
        return path.lstat().st_size, 1
    total, files = 0, 0
    for root, _dirs, names in os.walk(path):
        for name in names:
            try:
                total += (Path(root) / name).lstat().st_size
                files += 1
            except OSError as e:
                logger.debug("Skipping %s: %s", name, e)
    return total, files


# ---------------------------------------------------------------------------
# NasTool
# ---------------------------------------------------------------------------

class NasTool:
    """Recycle-bin and storage operations on the NAS.

    Args:
        share_roots: Share roots to scan. A root may itself be an
            @Recycle directory, contain one, or contain shares that do.
        ssh_host: When set (with ssh_username), commands run remotely.
        ssh_port: SSH port.
        ssh_username: Remote user.
        ssh_key_path: Private key passed to ssh -i. Empty uses the
            ssh client's own defaults.
        preview_limit: Entries included in a summary preview.
        command_timeout: Seconds allowed per remote command.
    """

    def __init__(
        self,
        share_roots: list[str] | None = None,
        ssh_host: str = "",
        ssh_port: int = 22,
        ssh_username: str = "",
        ssh_key_path: str = "",
        preview_limit: int = 5,
        command_timeout: float = 60,
    ):
        self.share_roots = [r for r in (share_roots or []) if r]
        self.ssh_host = ssh_host
        self.ssh_port = int(ssh_port or 22)
        self.ssh_username = ssh_username
        self.ssh_key_path = ssh_key_path
        self.preview_limit = preview_limit
        self.command_timeout = command_timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.share_roots)

    @property
    def is_remote(self) -> bool:
        return bool(self.ssh_host and self.ssh_username)

    # -------------------------------------------------------------------
    # Remote execution
    # -------------------------------------------------------------------

    def _ssh_argv(self, command: str) -> list[str]:
        argv = ["ssh", "-p", str(self.ssh_port), "-o", "BatchMode=yes"]
        if self.ssh_key_path:
            argv += ["-i", os.path.expanduser(self.ssh_key_path)]
        argv += [f"{self.ssh_username}@{self.ssh_host}", command]
        return argv

    async def run_remote(self, command: str) -> str:
        """Run a shell command on the NAS and return its stripped stdout."""
        logger.debug("ssh %s: %s", self.ssh_host, command[:120])
        proc = await asyncio.create_subprocess_exec(
            *self._ssh_argv(command),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise NasCommandError(f"ssh command timed out after {self.command_timeout}s")
        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            raise NasCommandError(message or f"ssh command failed with exit code {proc.returncode}")
        return stdout.decode(errors="replace").strip()

    async def _run_script(self, script: str) -> str:
        return await self.run_remote(f"/bin/sh -c {shlex.quote(script.strip())}")

    # -------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------

    async def discover_bins(self) -> list[RecycleBin]:
        if self.is_remote:
            return await self._discover_remote()
        return await asyncio.to_thread(self._discover_local)

    def _discover_local(self) -> list[RecycleBin]:
        seen: set[str] = set()
        bins: list[RecycleBin] = []

        def add(share: str, recycle: Path):
            key = str(recycle)
            if key not in seen:
                seen.add(key)
                bins.append(RecycleBin(share=share, recycle_path=key))

        for raw in self.share_roots:
            root = Path(raw).resolve()
            if not root.is_dir():
                continue
            if root.name == RECYCLE_DIR:
                add(root.parent.name, root)
                continue
            direct = root / RECYCLE_DIR
            if direct.is_dir():
                add(root.name, direct)
                continue
            for child in sorted(root.iterdir()):
                if child.is_dir() and (child / RECYCLE_DIR).is_dir():
                    add(child.name, child / RECYCLE_DIR)
        return bins

    async def _discover_remote(self) -> list[RecycleBin]:
        seen: set[str] = set()
        bins: list[RecycleBin] = []
        for root in self.share_roots:
            script = f"""
root={shlex.quote(root)}
if [ -d "$root" ]; then
  find "$root" -mindepth 1 -maxdepth 2 -type d -name '{RECYCLE_DIR}' -print
fi
"""
            output = await self._run_script(script)
            for line in output.splitlines():
                path = line.strip()
                if not path or path in seen:
                    continue
                seen.add(path)
                bins.append(RecycleBin(
                    share=PurePosixPath(path).parent.name, recycle_path=path,
                ))
        return bins

    # -------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------

    async def summarize_bin(self, recycle_path: str) -> BinSummary:
        if self.is_remote:
            return await self._summarize_remote(recycle_path)
        return await asyncio.to_thread(self._summarize_local, recycle_path)

    def _summarize_local(self, recycle_path: str) -> BinSummary:
        path = Path(recycle_path)
        if not path.is_dir():
            raise FileNotFoundError(f"Recycle bin path does not exist: {recycle_path}")
        summary = BinSummary()
        for child in path.iterdir():
            size, files = _walk_size(child)
            summary.total_bytes += size
            summary.total_files += files
            summary.entries.append(BinEntry(
                name=child.name,
                size_bytes=size,
                file_count=files,
                kind="directory" if child.is_dir() else "file",
            ))
        summary.entries.sort(key=lambda e: e.size_bytes, reverse=True)
        summary.entry_count = len(summary.entries)
        summary.preview = summary.entries[: self.preview_limit]
        return summary

    async def _summarize_remote(self, recycle_path: str) -> BinSummary:
        script = f"""
path={shlex.quote(recycle_path)}
if [ ! -d "$path" ]; then
  echo "__MISSING__"
  exit 0
fi
total_bytes=$(du -sb "$path" | cut -f1)
total_files=$(find "$path" -type f | wc -l | tr -d '[:space:]')
entry_count=$(ls -A "$path" 2>/dev/null | wc -l | tr -d '[:space:]')
echo "__SUMMARY__:$total_bytes:$total_files:$entry_count"
ls -A "$path" 2>/dev/null | head -n {int(self.preview_limit)} | while IFS= read -r entry; do
  size=$(du -sb "$path/$entry" | cut -f1)
  printf "__ENTRY__:%s:%s\\n" "$entry" "$size"
done
"""
        output = await self._run_script(script)
        if "__MISSING__" in output:
            raise FileNotFoundError(f"Recycle bin path does not exist: {recycle_path}")
        return parse_summary_output(output)

    # -------------------------------------------------------------------
    # Emptying
    # -------------------------------------------------------------------

    async def empty_bin(self, recycle_path: str) -> EmptyResult:
        """Delete everything inside a recycle bin.

        An entry that cannot be deleted is counted in EmptyResult.failed
        and the remaining entries are still attempted.
        """
        if self.is_remote:
            return await self._empty_remote(recycle_path)
        return await asyncio.to_thread(self._empty_local, recycle_path)

    def _empty_local(self, recycle_path: str) -> EmptyResult:
        result = EmptyResult()
        for child in Path(recycle_path).iterdir():
            try:
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            except OSError as e:
                result.failed += 1
                logger.warning("Could not delete %s: %s", child, e)
                continue
            result.removed += 1
        logger.info("Emptied %s (%d removed, %d failed)", recycle_path, result.removed, result.failed)
        return result

    async def _empty_remote(self, recycle_path: str) -> EmptyResult:
        script = f"""
path={shlex.quote(recycle_path)}
if [ ! -d "$path" ]; then
  echo "__REMOVED__:0"
  exit 0
fi
count=$(ls -A "$path" 2>/dev/null | wc -l | tr -d '[:space:]')
rm -rf "$path"/* "$path"/.[!.]* "$path"/..?* 2>/dev/null
left=$(ls -A "$path" 2>/dev/null | wc -l | tr -d '[:space:]')
echo "__REMOVED__:$((count - left))"
echo "__FAILED__:$left"
"""
        output = await self._run_script(script)
        result = EmptyResult()
        for line in output.splitlines():
            if line.startswith("__REMOVED__:"):
                result.removed = int(line.split(":", 1)[1] or 0)
            elif line.startswith("__FAILED__:"):
                result.failed = int(line.split(":", 1)[1] or 0)
        logger.info("Emptied remote %s (%d removed, %d failed)", recycle_path, result.removed, result.failed)
        return result

    # -------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------

    async def storage_status(self) -> list[StorageStatus]:
        if self.is_remote:
            return await self._storage_remote()
        return await asyncio.to_thread(self._storage_local)

    def _storage_local(self) -> list[StorageStatus]:
        results = []
        for root in self.share_roots:
            try:
                usage = shutil.disk_usage(root)
            except OSError as e:
                logger.error("Failed to read disk usage for %s: %s", root, e)
                continue
            used_pct = round(usage.used / usage.total * 100) if usage.total else 0
            results.append(StorageStatus(
                path=root,
                mount=root,
                total_bytes=usage.total,
                used_bytes=usage.used,
                available_bytes=usage.free,
                used_percent=used_pct,
            ))
        return results

    async def _storage_remote(self) -> list[StorageStatus]:
        roots = " ".join(shlex.quote(r) for r in self.share_roots)
        output = await self.run_remote(f"/bin/df -P -B1 {roots}")
        rows = parse_df_output(output or "")
        if not rows:
            # Some firmwares reject path arguments; filter the full table
            full = await self.run_remote("/bin/df -P -B1")
            rows = [
                r for r in parse_df_output(full or "")
                if any(r["mount"].startswith(root) for root in self.share_roots)
            ]
        return [_status_from_df(r["mount"], r) for r in rows]


def parse_summary_output(output: str) -> BinSummary:
    """Parse the __SUMMARY__/__ENTRY__ lines printed by the remote script."""
    summary = BinSummary()
    for line in output.splitlines():
        if line.startswith("__SUMMARY__:"):
            _, total_bytes, total_files, entries = (line.split(":") + ["0"] * 4)[:4]
            summary.total_bytes = int(total_bytes or 0)
            summary.total_files = int(total_files or 0)
            summary.entry_count = int(entries or 0)
        elif line.startswith("__ENTRY__:"):
            name, _, size = line[len("__ENTRY__:"):].rpartition(":")
            summary.preview.append(BinEntry(name=name, size_bytes=int(size or 0)))
    return summary
