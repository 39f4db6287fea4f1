"""JSON project documents, one file per project id.

Documents mirror ``ProjectState`` minus runtime-only fields. Loading is
lenient: missing fields take their defaults, unknown keys are ignored, a
malformed section is reset rather than failing the whole load, and the legacy
flat single-output shape is migrated into one-version stage histories.
"""

import errno
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from config import settings
from contracts import (
    ArtifactVersion,
    ProjectSettings,
    ProjectState,
    Stage,
    StageHistory,
    StorageQuotaExceeded,
    TokenUsage,
    now_ms,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

LEGACY_STAGE_FIELDS = {
    "researchOutput": Stage.RESEARCH,
    "prdOutput": Stage.PRD,
    "techOutput": Stage.TECH,
    "agentOutputs": Stage.AGENT,
    "buildPlan": Stage.BUILD,
}

QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class ProjectSummary(BaseModel):
    """Listing entry for a stored project."""
    id: str
    name: str
    last_modified: int


def serialize_project(state: ProjectState) -> Dict[str, Any]:
    """Document form of a project. Save status and the session are excluded."""
    document = state.model_dump(mode="json")
    document["schema_version"] = SCHEMA_VERSION
    return document


def _legacy_agent_text(value: Any) -> str:
    if isinstance(value, dict):
        sections = [f"## {name}\n\n{text}" for name, text in value.items() if text]
        return "\n\n".join(sections)
    return value if isinstance(value, str) else ""


def _legacy_name(data: Dict[str, Any]) -> str:
    answers = data.get("answers")
    if not isinstance(answers, dict):
        answers = {}
    name = answers.get("project_description") or answers.get("prd_vibe_name")
    if not isinstance(name, str) or not name:
        name = "Legacy Project"
    return name[:30] + "..." if len(name) > 30 else name


def _migrate_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert the flat single-output document shape to stage histories."""
    timestamp = data.get("lastModified") or now_ms()
    stages = {}
    for key, stage in LEGACY_STAGE_FIELDS.items():
        text = _legacy_agent_text(data.get(key))
        if text:
            stages[stage.value] = {
                "stage": stage.value,
                "versions": [{"content": text, "timestamp": timestamp}],
                "current_index": 0,
            }

    migrated: Dict[str, Any] = {
        "id": data.get("id"),
        "name": data.get("name") or _legacy_name(data),
        "last_modified": timestamp,
        "answers": data.get("answers") or {},
        "stages": stages,
    }
    legacy_settings = data.get("settings") or {}
    if isinstance(legacy_settings, dict) and "modelName" in legacy_settings:
        migrated["settings"] = {
            "provider_id": "gemini",
            "model_id": legacy_settings.get("modelName"),
            "generation": {
                "temperature": legacy_settings.get("temperature"),
                "top_k": legacy_settings.get("topK"),
                "top_p": legacy_settings.get("topP"),
                "thinking_budget": legacy_settings.get("thinkingBudget") or 0,
                "use_grounding": bool(legacy_settings.get("useGrounding")),
            },
        }
    logger.info("Migrated legacy project document %s", data.get("id"))
    return {k: v for k, v in migrated.items() if v is not None}


def _is_legacy(data: Dict[str, Any]) -> bool:
    return "stages" not in data and any(key in data for key in LEGACY_STAGE_FIELDS)


def _section(model, value: Any, label: str):
    """Validate one section, falling back to defaults when it is malformed."""
    if value is None:
        return model()
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        logger.warning("Resetting malformed %s section: %s", label, exc.error_count())
        return model()


def _stages(value: Any) -> Dict[Stage, StageHistory]:
    stages: Dict[Stage, StageHistory] = {}
    if not isinstance(value, dict):
        return stages
    for key, raw in value.items():
        try:
            stage = Stage(key)
        except ValueError:
            logger.warning("Ignoring unknown stage %r", key)
            continue
        if not isinstance(raw, dict):
            continue
        try:
            stages[stage] = StageHistory.model_validate({**raw, "stage": stage.value})
        except ValidationError:
            # Keep whatever versions are readable
            versions = []
            raw_versions = raw.get("versions")
            if not isinstance(raw_versions, list):
                raw_versions = []
            for item in raw_versions:
                try:
                    versions.append(ArtifactVersion.model_validate(item))
                except ValidationError:
                    continue
            stages[stage] = StageHistory(stage=stage, versions=tuple(versions), current_index=len(versions) - 1)
    return stages


def deserialize_project(data: Dict[str, Any]) -> ProjectState:
    """Build a ``ProjectState`` from a stored document of any known shape."""
    if _is_legacy(data):
        data = _migrate_legacy(data)

    fields: Dict[str, Any] = {
        "stages": _stages(data.get("stages")),
        "settings": _section(ProjectSettings, data.get("settings"), "settings"),
        "token_usage": _section(TokenUsage, data.get("token_usage"), "token_usage"),
    }
    if isinstance(data.get("id"), str) and data["id"]:
        fields["id"] = data["id"]
    if isinstance(data.get("name"), str):
        fields["name"] = data["name"]
    if isinstance(data.get("last_modified"), int):
        fields["last_modified"] = data["last_modified"]
    answers = data.get("answers")
    if isinstance(answers, dict):
        fields["answers"] = {str(k): v for k, v in answers.items() if isinstance(v, str)}
    # A stored document never carries an active session
    return ProjectState(**fields)


class DocumentStore:
    """Reads and writes project documents under ``<workspace>/projects``."""

    def __init__(self, root: Optional[Path] = None, max_document_bytes: Optional[int] = None):
        self.root = Path(root) if root is not None else settings.get_workspace_path() / "projects"
        self.max_document_bytes = (
            settings.max_document_bytes if max_document_bytes is None else max_document_bytes
        )

    def path_for(self, project_id: str) -> Path:
        return self.root / f"{project_id}.json"

    def exists(self, project_id: str) -> bool:
        return self.path_for(project_id).exists()

    def write(self, state: ProjectState) -> Path:
        """Atomically write a project document.

        Raises:
            StorageQuotaExceeded: Document larger than the quota, or disk full
        """
        payload = json.dumps(serialize_project(state), indent=2)
        size = len(payload.encode("utf-8"))
        if self.max_document_bytes and size > self.max_document_bytes:
            raise StorageQuotaExceeded(
                f"Storage full: project is {size} bytes, limit is {self.max_document_bytes}"
            )

        path = self.path_for(state.id)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{state.id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            if exc.errno in QUOTA_ERRNOS:
                raise StorageQuotaExceeded("Storage full: project could not be saved") from exc
            raise
        logger.debug("Wrote project %s (%d bytes)", state.id, size)
        return path

    def read(self, project_id: str) -> ProjectState:
        """Load a project.

        Raises:
            FileNotFoundError: No document for this id
            ValueError: The document is not valid JSON
        """
        path = self.path_for(project_id)
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Project document {path} is not an object")
        state = deserialize_project(data)
        if state.id != project_id:
            state = state.model_copy(update={"id": project_id})
        return state

    def delete(self, project_id: str) -> bool:
        path = self.path_for(project_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list(self) -> List[ProjectSummary]:
        """Summaries of all stored projects, most recently modified first."""
        if not self.root.exists():
            return []
        summaries = []
        for path in self.root.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable project document %s: %s", path.name, exc)
                continue
            if not isinstance(data, dict):
                continue
            name = data.get("name")
            if not isinstance(name, str) or not name:
                name = _legacy_name(data) if _is_legacy(data) else "Untitled Project"
            last_modified = data.get("last_modified", data.get("lastModified"))
            if isinstance(last_modified, bool) or not isinstance(last_modified, int):
                last_modified = 0
            summaries.append(ProjectSummary(id=path.stem, name=name, last_modified=last_modified))
        return sorted(summaries, key=lambda s: s.last_modified, reverse=True)
