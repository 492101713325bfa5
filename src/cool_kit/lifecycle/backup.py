"""Backups of the application stack, kept on the target itself.

A backup is a directory under the backup root holding a compressed database
dump, the cache snapshot, an archive of the data directories, a copy of the
configuration files and a ``metadata.json`` describing all of it.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..errors import (
    BackupError,
    BackupNotFoundError,
    CommandFailedError,
    CoolKitError,
    ExecutorConnectionError,
    RestoreError,
)
from ..executor import CommandExecutor
from ..readiness import ProbeResult, containers_running_probe, wait_until
from .compose import DATA_DIRS, AppLayout, ComposeCommands, bash_script

logger = logging.getLogger(__name__)

_BACKUP_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_SEPARATOR = "---"
_MISSING_EXIT = 3


class BackupType(str, Enum):
    MANUAL = "manual"
    PRE_UPDATE = "pre-update"


@dataclass
class BackupRecord:
    id: str
    timestamp: str
    type: str
    application_version: str = "unknown"
    size_bytes: int = 0
    storage_path: str = ""

    @classmethod
    def from_metadata(cls, data: Dict[str, Any], layout: AppLayout) -> "BackupRecord":
        backup_id = data["id"]
        return cls(
            id=backup_id,
            timestamp=str(data.get("timestamp", "")),
            type=str(data.get("type", BackupType.MANUAL.value)),
            application_version=str(data.get("version") or "unknown"),
            size_bytes=int(data.get("size") or 0),
            storage_path=layout.backup_path(backup_id),
        )

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type,
            "version": self.application_version,
            "size": self.size_bytes,
        }


def _parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class BackupManager:
    """Create, list, inspect, delete and restore backups on one target."""

    def __init__(
        self,
        executor: CommandExecutor,
        layout: Optional[AppLayout] = None,
        *,
        poll_interval: float = 5.0,
        verify_timeout: float = 180.0,
        database_timeout: float = 60.0,
        now: Callable[[], datetime] = datetime.now,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executor = executor
        self.layout = layout or AppLayout()
        self.compose = ComposeCommands(executor, self.layout)
        self.poll_interval = poll_interval
        self.verify_timeout = verify_timeout
        self.database_timeout = database_timeout
        self._now = now
        self._clock = clock
        self._sleep = sleep

    def _path(self, backup_id: str) -> str:
        if not _BACKUP_ID.match(backup_id) or ".." in backup_id:
            raise BackupNotFoundError(backup_id, "invalid backup id")
        return self.layout.backup_path(backup_id)

    # ------------------------------------------------------------------ create

    def create(self, backup_type: BackupType = BackupType.MANUAL) -> BackupRecord:
        """Snapshot the stack in a single remote script and return its record.

        The metadata printed by the script is authoritative; if it cannot be
        parsed the record falls back to the locally known id, type and time.
        """
        now = self._now()
        backup_id = f"{backup_type.value}-{now:%Y%m%d-%H%M%S}"
        timestamp = now.isoformat(timespec="seconds")
        path = self._path(backup_id)
        layout = self.layout
        q = shlex.quote

        script = f"""set -eo pipefail
cd {q(layout.root_dir)}
mkdir -p {q(path)}/volumes {q(path)}/config
docker compose exec -T {layout.db_service} pg_dump -U {layout.db_user} {layout.db_name} | gzip > {q(path)}/database.sql.gz
docker compose exec -T {layout.cache_service} sh -c 'redis-cli -a "$REDIS_PASSWORD" --no-auth-warning --raw SAVE' >/dev/null
docker cp {layout.cache_service}:/data/dump.rdb {q(path)}/redis-dump.rdb
tar czf {q(path)}/volumes/data.tar.gz -C {q(layout.root_dir)} {' '.join(DATA_DIRS)} 2>/dev/null || true
cp {q(layout.env_path)} {q(path)}/config/
cp {q(layout.compose_path)} {q(path)}/config/
APP_VERSION=$(docker compose exec -T {layout.app_service} php artisan --version 2>/dev/null | awk '{{print $NF}}' || true)
APP_VERSION=${{APP_VERSION:-unknown}}
BACKUP_SIZE=$(du -sb {q(path)} | awk '{{print $1}}')
cat > {q(path)}/metadata.json <<EOF
{{"id": "{backup_id}", "timestamp": "{timestamp}", "type": "{backup_type.value}", "version": "$APP_VERSION", "size": $BACKUP_SIZE}}
EOF
cat {q(path)}/metadata.json
"""
        logger.info("Creating backup %s", backup_id)
        try:
            output = self.executor.execute(bash_script(script))
        except (CommandFailedError, ExecutorConnectionError) as exc:
            raise BackupError(f"backup creation failed: {exc}") from exc

        data = _parse_json_object(output)
        if data is not None and data.get("id") == backup_id:
            record = BackupRecord.from_metadata(data, layout)
        else:
            logger.warning("Could not parse metadata of backup %s; using local values", backup_id)
            record = BackupRecord(
                id=backup_id,
                timestamp=timestamp,
                type=backup_type.value,
                storage_path=path,
            )
        logger.info("Backup created: %s (%d bytes)", record.id, record.size_bytes)
        return record

    # ------------------------------------------------------------------ query

    def list(self) -> List[BackupRecord]:
        """All backups with readable metadata, newest first."""
        script = (
            f"cd {shlex.quote(self.layout.backup_dir)} 2>/dev/null || exit 0\n"
            "for dir in */; do\n"
            '  if [ -f "$dir/metadata.json" ]; then\n'
            '    cat "$dir/metadata.json"\n'
            f'    echo "{_SEPARATOR}"\n'
            "  fi\n"
            "done\n"
        )
        try:
            output = self.executor.execute(bash_script(script))
        except (CommandFailedError, ExecutorConnectionError) as exc:
            raise BackupError(f"failed to list backups: {exc}") from exc

        records = []
        for chunk in output.split(_SEPARATOR):
            chunk = chunk.strip()
            if not chunk:
                continue
            try:
                data = json.loads(chunk)
                records.append(BackupRecord.from_metadata(data, self.layout))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                logger.debug("Skipping unreadable backup metadata: %r", chunk[:200])
        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records

    def get(self, backup_id: str) -> BackupRecord:
        path = self._path(backup_id)
        result = self.executor.run(
            bash_script(
                f"[ -f {shlex.quote(path)}/metadata.json ] || exit {_MISSING_EXIT}\n"
                f"cat {shlex.quote(path)}/metadata.json"
            )
        )
        if result.exit_status == _MISSING_EXIT:
            raise BackupNotFoundError(backup_id)
        if not result.ok:
            raise BackupError(f"failed to read backup {backup_id}: {result.stderr.strip()}")
        data = _parse_json_object(result.stdout)
        if data is None or "id" not in data:
            raise BackupNotFoundError(backup_id, "metadata is unreadable")
        return BackupRecord.from_metadata(data, self.layout)

    def delete(self, backup_id: str) -> None:
        path = self._path(backup_id)
        result = self.executor.run(
            bash_script(f"[ -d {shlex.quote(path)} ] || exit {_MISSING_EXIT}\nrm -rf {shlex.quote(path)}")
        )
        if result.exit_status == _MISSING_EXIT:
            raise BackupNotFoundError(backup_id)
        if not result.ok:
            raise BackupError(f"failed to delete backup {backup_id}: {result.stderr.strip()}")
        logger.info("Backup deleted: %s", backup_id)

    # ------------------------------------------------------------------ restore

    def restore(
        self,
        backup_id: str,
        notify: Optional[Callable[[str], None]] = None,
    ) -> BackupRecord:
        """Restore ``backup_id`` over the running stack.

        Phases run in a fixed order: stop services, restore configuration and
        data files, start services, wait for the database, replace the
        database, restore the cache snapshot, restart the application, then
        poll until every service is running. Any failure raises
        :class:`RestoreError` naming the phase.
        """
        record = self.get(backup_id)
        path = record.storage_path
        layout = self.layout
        q = shlex.quote

        def phase(name: str, action: Callable[[], Any]) -> None:
            logger.info("Restore %s: %s", backup_id, name)
            if notify is not None:
                notify(name)
            try:
                action()
            except CoolKitError as exc:
                raise RestoreError(name, exc) from exc

        phase("stop services", self.compose.down)
        phase(
            "restore files",
            lambda: self.executor.execute(
                bash_script(
                    "set -e\n"
                    f"cp {q(path)}/config/.env {q(layout.env_path)}\n"
                    f"cp {q(path)}/config/docker-compose.yml {q(layout.compose_path)}\n"
                    f"if [ -f {q(path)}/volumes/data.tar.gz ]; then\n"
                    f"  tar xzf {q(path)}/volumes/data.tar.gz -C {q(layout.root_dir)}\n"
                    "fi\n"
                )
            ),
        )
        phase("start services", self.compose.up)
        phase("wait for database", self._wait_for_database)
        phase(
            "restore database",
            lambda: self.executor.execute(
                bash_script(
                    "set -eo pipefail\n"
                    f"cd {q(layout.root_dir)}\n"
                    f"docker compose stop {layout.app_service}\n"
                    f"docker compose exec -T {layout.db_service} psql -U {layout.db_user} "
                    f'-c "DROP DATABASE IF EXISTS {layout.db_name} WITH (FORCE);" postgres\n'
                    f"docker compose exec -T {layout.db_service} psql -U {layout.db_user} "
                    f'-c "CREATE DATABASE {layout.db_name};" postgres\n'
                    f"zcat {q(path)}/database.sql.gz | docker compose exec -T {layout.db_service} "
                    f"psql -U {layout.db_user} {layout.db_name} >/dev/null\n"
                )
            ),
        )
        phase("restore cache", lambda: self._restore_cache(path))
        phase("restart application", lambda: self.compose.restart(layout.app_service))
        phase("verify services", self._verify_services)

        logger.info("Restored backup %s", backup_id)
        return record

    def _restore_cache(self, path: str) -> None:
        # redis rewrites dump.rdb on shutdown; replace it only while stopped
        cache = self.layout.cache_service
        self.compose.stop(cache)
        self.executor.execute(f"docker cp {shlex.quote(path)}/redis-dump.rdb {cache}:/data/dump.rdb")
        self.compose.start(cache)

    def _wait_for_database(self) -> None:
        layout = self.layout

        def probe() -> ProbeResult:
            try:
                self.compose.exec(layout.db_service, f"pg_isready -U {layout.db_user}")
            except (CommandFailedError, ExecutorConnectionError) as exc:
                return ProbeResult.not_ready(str(exc))
            return ProbeResult.ready()

        wait_until(
            probe,
            interval=self.poll_interval,
            deadline=self.database_timeout,
            clock=self._clock,
            sleep=self._sleep,
        ).raise_for_outcome("database")

    def _verify_services(self) -> None:
        wait_until(
            containers_running_probe(self.compose, self.layout.services),
            interval=self.poll_interval,
            deadline=self.verify_timeout,
            clock=self._clock,
            sleep=self._sleep,
        ).raise_for_outcome("services")
