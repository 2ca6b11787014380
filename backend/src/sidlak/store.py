from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from .domain import (
    Department,
    Event,
    MedalType,
    ResultRecord,
    StoreBackend,
    new_id,
)

logger = logging.getLogger(__name__)


class MedalAlreadyAwarded(ValueError):
    """そのイベントのそのメダルは既に別の結果で使われている。"""

    def __init__(self, event_id: str, medal_type: MedalType):
        super().__init__(f"{medal_type} for event {event_id} is already awarded")
        self.event_id = event_id
        self.medal_type = medal_type


class Store(Protocol):
    def create_department(
        self, name: str, abbreviation: str | None = None, image_url: str | None = None
    ) -> Department: ...

    def get_department(self, department_id: str) -> Department | None: ...

    def list_departments(self) -> list[Department]: ...

    def update_department(self, department_id: str, **changes: str | None) -> Department: ...

    def delete_department(self, department_id: str) -> None: ...

    def create_event(
        self, name: str, category: str | None = None, icon: str | None = None
    ) -> Event: ...

    def get_event(self, event_id: str) -> Event | None: ...

    def list_events(self) -> list[Event]: ...

    def update_event(self, event_id: str, **changes: str | None) -> Event: ...

    def delete_event(self, event_id: str) -> None: ...

    def record_result(
        self, event_id: str, department_id: str, medal_type: MedalType
    ) -> ResultRecord: ...

    def get_result(self, result_id: str) -> ResultRecord | None: ...

    def list_results(self) -> list[ResultRecord]: ...

    def update_result(
        self, result_id: str, event_id: str, department_id: str, medal_type: MedalType
    ) -> ResultRecord: ...

    def delete_result(self, result_id: str) -> None: ...

    def reset_results(self) -> int: ...


_Named = TypeVar("_Named", Department, Event)


def _apply_changes(record: _Named, changes: dict[str, str | None], fields: set[str]) -> _Named:
    unknown = set(changes) - fields
    if unknown:
        raise ValueError(f"unknown fields: {sorted(unknown)}")
    if "name" in changes and not changes["name"]:
        raise ValueError("name must not be blank")
    return record.model_copy(update=changes)


def _apply_department_changes(dept: Department, changes: dict[str, str | None]) -> Department:
    return _apply_changes(dept, changes, {"name", "abbreviation", "image_url"})


def _apply_event_changes(event: Event, changes: dict[str, str | None]) -> Event:
    return _apply_changes(event, changes, {"name", "category", "icon"})


def _by_name(items: Iterable[_Named]) -> list[_Named]:
    return sorted(items, key=lambda x: (x.name, x.id))


def _by_created(results: list[ResultRecord]) -> list[ResultRecord]:
    return sorted(results, key=lambda r: (r.created_at, r.id))


@dataclass
class InMemoryStore(Store):
    departments: dict[str, Department]
    events: dict[str, Event]
    results: dict[str, ResultRecord]

    @classmethod
    def create(cls) -> "InMemoryStore":
        return cls(departments={}, events={}, results={})

    def create_department(
        self, name: str, abbreviation: str | None = None, image_url: str | None = None
    ) -> Department:
        if not name.strip():
            raise ValueError("name must not be blank")
        dept = Department(
            id=new_id("dept"), name=name.strip(), abbreviation=abbreviation, image_url=image_url
        )
        self.departments[dept.id] = dept
        logger.info("created department %s (%s)", dept.id, dept.name)
        return dept

    def get_department(self, department_id: str) -> Department | None:
        return self.departments.get(department_id)

    def list_departments(self) -> list[Department]:
        return _by_name(self.departments.values())

    def update_department(self, department_id: str, **changes: str | None) -> Department:
        dept = self.departments.get(department_id)
        if dept is None:
            raise KeyError("department not found")
        updated = _apply_department_changes(dept, changes)
        self.departments[department_id] = updated
        logger.info("updated department %s", department_id)
        return updated

    def delete_department(self, department_id: str) -> None:
        if self.departments.pop(department_id, None) is None:
            raise KeyError("department not found")
        removed = [rid for rid, r in self.results.items() if r.department_id == department_id]
        for rid in removed:
            del self.results[rid]
        logger.info("deleted department %s and %d result(s)", department_id, len(removed))

    def create_event(
        self, name: str, category: str | None = None, icon: str | None = None
    ) -> Event:
        if not name.strip():
            raise ValueError("name must not be blank")
        event = Event(id=new_id("evt"), name=name.strip(), category=category, icon=icon)
        self.events[event.id] = event
        logger.info("created event %s (%s)", event.id, event.name)
        return event

    def get_event(self, event_id: str) -> Event | None:
        return self.events.get(event_id)

    def list_events(self) -> list[Event]:
        return _by_name(self.events.values())

    def update_event(self, event_id: str, **changes: str | None) -> Event:
        event = self.events.get(event_id)
        if event is None:
            raise KeyError("event not found")
        updated = _apply_event_changes(event, changes)
        self.events[event_id] = updated
        logger.info("updated event %s", event_id)
        return updated

    def delete_event(self, event_id: str) -> None:
        if self.events.pop(event_id, None) is None:
            raise KeyError("event not found")
        removed = [rid for rid, r in self.results.items() if r.event_id == event_id]
        for rid in removed:
            del self.results[rid]
        logger.info("deleted event %s and %d result(s)", event_id, len(removed))

    def _check_references(self, event_id: str, department_id: str) -> None:
        if event_id not in self.events:
            raise ValueError("event not found")
        if department_id not in self.departments:
            raise ValueError("department not found")

    def _slot_holder(self, event_id: str, medal_type: MedalType) -> ResultRecord | None:
        for r in self.results.values():
            if r.event_id == event_id and r.medal_type == medal_type:
                return r
        return None

    def record_result(
        self, event_id: str, department_id: str, medal_type: MedalType
    ) -> ResultRecord:
        self._check_references(event_id, department_id)
        if self._slot_holder(event_id, medal_type) is not None:
            logger.warning("rejected duplicate %s for event %s", medal_type, event_id)
            raise MedalAlreadyAwarded(event_id, medal_type)
        result = ResultRecord(
            id=new_id("res"),
            event_id=event_id,
            department_id=department_id,
            medal_type=medal_type,
            created_at=_now(),
        )
        self.results[result.id] = result
        logger.info("recorded %s for %s in event %s", medal_type, department_id, event_id)
        return result

    def get_result(self, result_id: str) -> ResultRecord | None:
        return self.results.get(result_id)

    def list_results(self) -> list[ResultRecord]:
        return list(self.results.values())

    def update_result(
        self, result_id: str, event_id: str, department_id: str, medal_type: MedalType
    ) -> ResultRecord:
        current = self.results.get(result_id)
        if current is None:
            raise KeyError("result not found")
        self._check_references(event_id, department_id)
        holder = self._slot_holder(event_id, medal_type)
        if holder is not None and holder.id != result_id:
            logger.warning("rejected duplicate %s for event %s", medal_type, event_id)
            raise MedalAlreadyAwarded(event_id, medal_type)
        updated = current.model_copy(
            update={"event_id": event_id, "department_id": department_id, "medal_type": medal_type}
        )
        self.results[result_id] = updated
        logger.info("updated result %s", result_id)
        return updated

    def delete_result(self, result_id: str) -> None:
        if self.results.pop(result_id, None) is None:
            raise KeyError("result not found")
        logger.info("deleted result %s", result_id)

    def reset_results(self) -> int:
        count = len(self.results)
        self.results.clear()
        logger.info("reset %d result(s)", count)
        return count


def _slot_key(event_id: str, medal_type: MedalType) -> str:
    return f"{event_id}#{medal_type}"


@dataclass
class DynamoDBStore(Store):
    """単一テーブル構成。

    pk=DEPARTMENT / EVENT / RESULT。結果の sk は "{event_id}#{medal_type}" で、
    キーそのものが「1イベント1メダル1学科」の一意制約になる。
    """

    table_name: str

    @classmethod
    def from_env(cls) -> "DynamoDBStore":
        table_name = os.environ.get("DDB_TABLE_NAME", "")
        if not table_name:
            raise RuntimeError("DDB_TABLE_NAME is required for dynamodb store")
        return cls(table_name=table_name)

    @property
    def _table(self):
        ddb = boto3.resource("dynamodb")
        return ddb.Table(self.table_name)

    def _query_all(self, pk: str) -> list[dict[str, Any]]:
        table = self._table
        kwargs: dict[str, Any] = {"KeyConditionExpression": Key("pk").eq(pk)}
        items: list[dict[str, Any]] = []
        while True:
            resp = table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    # departments

    @staticmethod
    def _department_from_item(item: dict[str, Any]) -> Department:
        return Department(
            id=item["sk"],
            name=item["name"],
            abbreviation=item.get("abbreviation"),
            image_url=item.get("image_url"),
        )

    def _put_department(self, dept: Department) -> None:
        item: dict[str, Any] = {"pk": "DEPARTMENT", "sk": dept.id, "name": dept.name}
        if dept.abbreviation:
            item["abbreviation"] = dept.abbreviation
        if dept.image_url:
            item["image_url"] = dept.image_url
        self._table.put_item(Item=item)

    def create_department(
        self, name: str, abbreviation: str | None = None, image_url: str | None = None
    ) -> Department:
        if not name.strip():
            raise ValueError("name must not be blank")
        dept = Department(
            id=new_id("dept"), name=name.strip(), abbreviation=abbreviation, image_url=image_url
        )
        self._put_department(dept)
        logger.info("created department %s (%s)", dept.id, dept.name)
        return dept

    def get_department(self, department_id: str) -> Department | None:
        resp = self._table.get_item(Key={"pk": "DEPARTMENT", "sk": department_id})
        item = resp.get("Item")
        if not item:
            return None
        return self._department_from_item(item)

    def list_departments(self) -> list[Department]:
        return _by_name(self._department_from_item(it) for it in self._query_all("DEPARTMENT"))

    def update_department(self, department_id: str, **changes: str | None) -> Department:
        dept = self.get_department(department_id)
        if dept is None:
            raise KeyError("department not found")
        updated = _apply_department_changes(dept, changes)
        self._put_department(updated)
        logger.info("updated department %s", department_id)
        return updated

    def delete_department(self, department_id: str) -> None:
        if self.get_department(department_id) is None:
            raise KeyError("department not found")
        removed = self._delete_results_where(lambda r: r.department_id == department_id)
        self._table.delete_item(Key={"pk": "DEPARTMENT", "sk": department_id})
        logger.info("deleted department %s and %d result(s)", department_id, removed)

    # events

    @staticmethod
    def _event_from_item(item: dict[str, Any]) -> Event:
        return Event(
            id=item["sk"],
            name=item["name"],
            category=item.get("category"),
            icon=item.get("icon"),
        )

    def _put_event(self, event: Event) -> None:
        item: dict[str, Any] = {"pk": "EVENT", "sk": event.id, "name": event.name}
        if event.category:
            item["category"] = event.category
        if event.icon:
            item["icon"] = event.icon
        self._table.put_item(Item=item)

    def create_event(
        self, name: str, category: str | None = None, icon: str | None = None
    ) -> Event:
        if not name.strip():
            raise ValueError("name must not be blank")
        event = Event(id=new_id("evt"), name=name.strip(), category=category, icon=icon)
        self._put_event(event)
        logger.info("created event %s (%s)", event.id, event.name)
        return event

    def get_event(self, event_id: str) -> Event | None:
        resp = self._table.get_item(Key={"pk": "EVENT", "sk": event_id})
        item = resp.get("Item")
        if not item:
            return None
        return self._event_from_item(item)

    def list_events(self) -> list[Event]:
        return _by_name(self._event_from_item(it) for it in self._query_all("EVENT"))

    def update_event(self, event_id: str, **changes: str | None) -> Event:
        event = self.get_event(event_id)
        if event is None:
            raise KeyError("event not found")
        updated = _apply_event_changes(event, changes)
        self._put_event(updated)
        logger.info("updated event %s", event_id)
        return updated

    def delete_event(self, event_id: str) -> None:
        if self.get_event(event_id) is None:
            raise KeyError("event not found")
        removed = self._delete_results_where(lambda r: r.event_id == event_id)
        self._table.delete_item(Key={"pk": "EVENT", "sk": event_id})
        logger.info("deleted event %s and %d result(s)", event_id, removed)

    # results

    @staticmethod
    def _result_from_item(item: dict[str, Any]) -> ResultRecord:
        # sk: {event_id}#{medal_type}
        event_id, medal_type = item["sk"].rsplit("#", 1)
        return ResultRecord(
            id=item["id"],
            event_id=event_id,
            department_id=item["department_id"],
            medal_type=medal_type,
            created_at=datetime.fromisoformat(item["created_at"]),
        )

    def _check_references(self, event_id: str, department_id: str) -> None:
        if self.get_event(event_id) is None:
            raise ValueError("event not found")
        if self.get_department(department_id) is None:
            raise ValueError("department not found")

    def _put_result(self, result: ResultRecord, overwrite: bool = False) -> None:
        item = {
            "pk": "RESULT",
            "sk": _slot_key(result.event_id, result.medal_type),
            "id": result.id,
            "department_id": result.department_id,
            "created_at": result.created_at.isoformat(),
        }
        if overwrite:
            self._table.put_item(Item=item)
            return
        try:
            self._table.put_item(Item=item, ConditionExpression="attribute_not_exists(sk)")
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.warning(
                    "rejected duplicate %s for event %s", result.medal_type, result.event_id
                )
                raise MedalAlreadyAwarded(result.event_id, result.medal_type) from exc
            raise

    def _delete_slot(self, result: ResultRecord) -> None:
        self._table.delete_item(
            Key={"pk": "RESULT", "sk": _slot_key(result.event_id, result.medal_type)}
        )

    def _delete_results_where(self, predicate: Callable[[ResultRecord], bool]) -> int:
        doomed = [r for r in self.list_results() if predicate(r)]
        if not doomed:
            return 0
        with self._table.batch_writer() as batch:
            for r in doomed:
                batch.delete_item(
                    Key={"pk": "RESULT", "sk": _slot_key(r.event_id, r.medal_type)}
                )
        return len(doomed)

    def record_result(
        self, event_id: str, department_id: str, medal_type: MedalType
    ) -> ResultRecord:
        self._check_references(event_id, department_id)
        result = ResultRecord(
            id=new_id("res"),
            event_id=event_id,
            department_id=department_id,
            medal_type=medal_type,
            created_at=_now(),
        )
        self._put_result(result)
        logger.info("recorded %s for %s in event %s", medal_type, department_id, event_id)
        return result

    def get_result(self, result_id: str) -> ResultRecord | None:
        for r in self.list_results():
            if r.id == result_id:
                return r
        return None

    def list_results(self) -> list[ResultRecord]:
        return _by_created([self._result_from_item(it) for it in self._query_all("RESULT")])

    def update_result(
        self, result_id: str, event_id: str, department_id: str, medal_type: MedalType
    ) -> ResultRecord:
        current = self.get_result(result_id)
        if current is None:
            raise KeyError("result not found")
        self._check_references(event_id, department_id)
        updated = current.model_copy(
            update={"event_id": event_id, "department_id": department_id, "medal_type": medal_type}
        )
        if (current.event_id, current.medal_type) == (event_id, medal_type):
            self._put_result(updated, overwrite=True)
        else:
            # 新しい枠を先に確保してから古い枠を消す
            self._put_result(updated)
            self._delete_slot(current)
        logger.info("updated result %s", result_id)
        return updated

    def delete_result(self, result_id: str) -> None:
        current = self.get_result(result_id)
        if current is None:
            raise KeyError("result not found")
        self._delete_slot(current)
        logger.info("deleted result %s", result_id)

    def reset_results(self) -> int:
        count = self._delete_results_where(lambda r: True)
        logger.info("reset %d result(s)", count)
        return count


def build_store() -> Store:
    kind = os.environ.get("STORE_BACKEND", "inmemory").strip().lower() or "inmemory"
    try:
        backend = StoreBackend(kind=kind)
    except ValidationError as exc:
        raise ValueError(
            f"unsupported STORE_BACKEND {kind!r}: expected 'inmemory' or 'dynamodb'"
        ) from exc
    logger.info("using %s store", backend.kind)
    if backend.kind == "dynamodb":
        return DynamoDBStore.from_env()
    return InMemoryStore.create()


def _now() -> datetime:
    return datetime.now(timezone.utc)
