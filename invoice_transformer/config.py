"""
Application settings.

Loaded from an ``appsettings.json`` style file. Keys may be written in
PascalCase (``FolderSettings.InputFolder``) or snake_case.
"""
import json
from pathlib import Path
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from invoice_transformer.processing.coordinator import parse_summary_time


class FolderSettings(BaseModel):
    """Folder layout and file handling"""
    model_config = ConfigDict(populate_by_name=True)

    input_folder: Path = Field(Path('InvoiceProcessor/Input'), alias='InputFolder')
    output_folder: Path = Field(Path('InvoiceProcessor/Output'), alias='OutputFolder')
    archive_folder: Path = Field(Path('InvoiceProcessor/Output/Archive'), alias='ArchiveFolder')
    error_folder: Path = Field(Path('InvoiceProcessor/Output/Errors'), alias='ErrorFolder')
    log_folder: Path = Field(Path('InvoiceProcessor/Output/Logs'), alias='LogFolder')
    archive_processed_files: bool = Field(True, alias='ArchiveProcessedFiles')
    polling_interval_seconds: float = Field(5.0, gt=0, alias='PollingIntervalSeconds')
    lock_retry_attempts: int = Field(5, ge=1, alias='LockRetryAttempts')
    lock_retry_delay_seconds: float = Field(1.0, ge=0, alias='LockRetryDelaySeconds')
    debounce_seconds: float = Field(0.5, ge=0, alias='DebounceSeconds')
    file_pattern: str = Field('*.xml', alias='FilePattern')

    def ensure_directories(self) -> None:
        for folder in (self.input_folder, self.output_folder, self.error_folder, self.log_folder):
            folder.mkdir(parents=True, exist_ok=True)
        if self.archive_processed_files:
            self.archive_folder.mkdir(parents=True, exist_ok=True)


class NotificationSettings(BaseModel):
    """When notification events are raised"""
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = Field(False, validation_alias=AliasChoices(
        'enabled', 'Enabled', 'EnableEmailNotifications'))
    send_daily_summary: bool = Field(True, alias='SendDailySummary')
    daily_summary_time: str = Field('17:00', alias='DailySummaryTime')

    @field_validator('daily_summary_time')
    @classmethod
    def validate_summary_time(cls, v):
        parse_summary_time(v)
        return v

    @property
    def summary_time(self) -> Optional[str]:
        if self.enabled and self.send_daily_summary:
            return self.daily_summary_time
        return None


class AppSettings(BaseModel):
    """Root settings object"""
    model_config = ConfigDict(populate_by_name=True)

    folders: FolderSettings = Field(
        default_factory=FolderSettings,
        validation_alias=AliasChoices('folders', 'FolderSettings'),
    )
    notifications: NotificationSettings = Field(
        default_factory=NotificationSettings,
        validation_alias=AliasChoices('notifications', 'NotificationSettings', 'EmailSettings'),
    )


def load_settings(path: Optional[Union[str, Path]] = None) -> AppSettings:
    """
    Load settings from a JSON file, or defaults when no path is given.

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If a value is invalid
    """
    if path is None:
        return AppSettings()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    return AppSettings.model_validate(data)
