from __future__ import annotations

import pytest
from pydantic import ValidationError

from sidlak.domain import (
    CreateDepartmentRequest,
    CreateEventRequest,
    RecordResultRequest,
    UpdateDepartmentRequest,
)


def test_create_department_request_rejects_blank_name():
    """学科名が空白のみの場合は弾く。"""

    with pytest.raises(ValidationError):
        CreateDepartmentRequest(name="   ")


def test_create_department_request_strips_and_blanks_optional_fields():
    """略称・画像URLは前後の空白を除き、空なら None にする。"""

    req = CreateDepartmentRequest(name="  College of Engineering ", abbreviation=" COE ", image_url="  ")
    assert req.name == "College of Engineering"
    assert req.abbreviation == "COE"
    assert req.image_url is None


def test_update_department_request_tracks_only_sent_fields():
    """送られた項目だけを変更対象にする。"""

    req = UpdateDepartmentRequest(abbreviation="")
    assert req.model_dump(exclude_unset=True) == {"abbreviation": None}

    with pytest.raises(ValidationError):
        UpdateDepartmentRequest(name=" ")


def test_create_event_request_rejects_blank_name():
    with pytest.raises(ValidationError):
        CreateEventRequest(name="\n\t ")

    req = CreateEventRequest(name=" Chess ", category=" Board Games ")
    assert (req.name, req.category, req.icon) == ("Chess", "Board Games", None)


def test_record_result_request_rejects_unknown_medal_type():
    """メダル種別は gold / silver / bronze のみ。"""

    with pytest.raises(ValidationError):
        RecordResultRequest(event_id="e", department_id="d", medal_type="platinum")

    req = RecordResultRequest(event_id="e", department_id="d", medal_type="bronze")
    assert req.medal_type == "bronze"
