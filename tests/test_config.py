"""
Unit tests for settings loading.
"""
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from invoice_transformer.config import AppSettings, FolderSettings, NotificationSettings, load_settings


def write_settings(tmp_path, data):
    path = tmp_path / 'appsettings.json'
    path.write_text(json.dumps(data), encoding='utf-8')
    return path


class TestDefaults:

    def test_no_path_gives_defaults(self):
        settings = load_settings()

        assert settings.folders.input_folder == Path('InvoiceProcessor/Input')
        assert settings.folders.archive_processed_files is True
        assert settings.folders.polling_interval_seconds == 5.0
        assert settings.folders.lock_retry_attempts == 5
        assert settings.folders.lock_retry_delay_seconds == 1.0
        assert settings.folders.file_pattern == '*.xml'
        assert settings.notifications.enabled is False
        assert settings.notifications.daily_summary_time == '17:00'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / 'nope.json')


class TestLoading:

    def test_pascal_case_file(self, tmp_path):
        path = write_settings(tmp_path, {
            "FolderSettings": {
                "InputFolder": str(tmp_path / 'in'),
                "OutputFolder": str(tmp_path / 'out'),
                "ArchiveProcessedFiles": False,
                "PollingIntervalSeconds": 2,
            },
            "EmailSettings": {
                "EnableEmailNotifications": True,
                "SendDailySummary": True,
                "DailySummaryTime": "08:15",
            },
        })

        settings = load_settings(path)

        assert settings.folders.input_folder == tmp_path / 'in'
        assert settings.folders.archive_processed_files is False
        assert settings.folders.polling_interval_seconds == 2.0
        assert settings.notifications.enabled is True
        assert settings.notifications.summary_time == '08:15'

    def test_snake_case_keys(self):
        settings = AppSettings.model_validate({
            "folders": {"input_folder": "in", "debounce_seconds": 0},
            "notifications": {"enabled": True, "send_daily_summary": False},
        })

        assert settings.folders.input_folder == Path('in')
        assert settings.folders.debounce_seconds == 0
        assert settings.notifications.summary_time is None

    def test_summary_time_requires_notifications(self):
        assert NotificationSettings(enabled=False).summary_time is None
        assert NotificationSettings(enabled=True).summary_time == '17:00'

    def test_example_file_loads(self):
        example = Path(__file__).parent.parent / 'appsettings.example.json'

        settings = load_settings(example)

        assert settings.folders.error_folder == Path('InvoiceProcessor/Output/Errors')


class TestValidation:

    def test_invalid_summary_time(self):
        with pytest.raises(ValidationError):
            NotificationSettings(DailySummaryTime='not a time')

    @pytest.mark.parametrize("field,value", [
        ("PollingIntervalSeconds", 0),
        ("LockRetryAttempts", 0),
        ("LockRetryDelaySeconds", -1),
    ])
    def test_out_of_range_values(self, field, value):
        with pytest.raises(ValidationError):
            FolderSettings.model_validate({field: value})


def test_ensure_directories(tmp_path):
    folders = FolderSettings(
        input_folder=tmp_path / 'in',
        output_folder=tmp_path / 'out',
        archive_folder=tmp_path / 'out' / 'archive',
        error_folder=tmp_path / 'out' / 'errors',
        log_folder=tmp_path / 'out' / 'logs',
        archive_processed_files=False,
    )

    folders.ensure_directories()

    assert (tmp_path / 'in').is_dir()
    assert (tmp_path / 'out' / 'errors').is_dir()
    assert not (tmp_path / 'out' / 'archive').exists()
