from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="NOVAISFPS_")

    phase_timeout_s: float = 600.0
    reader_grace_s: float = 5.0
    native_timeout_s: float = 15.0
    interpreter: Literal["powershell", "python"] = "powershell"
    interpreter_candidates: Optional[List[str]] = None
    logs_dir: str = "Logs"
    backup_dir: str = "Backup"
    profiles_dir: str = "Profiles"
    scripts_dir: str = "Scripts"
    sync_dir_names: List[str] = Field(
        default_factory=lambda: ["OneDrive", "OneDrive - Personal", "OneDrive - Business"]
    )
    require_admin: bool = True
    pipeline_file: Optional[str] = None
    verify_checksum: bool = True

    def workspace_dirs(self) -> List[str]:
        return [self.logs_dir, self.backup_dir, self.profiles_dir, self.scripts_dir]
