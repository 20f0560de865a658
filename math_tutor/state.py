import uuid
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, TypeVar
from pydantic import BaseModel

if TYPE_CHECKING:
	from .services.session_monitor import SessionManager

RecordT = TypeVar("RecordT", bound=BaseModel)

class PersistenceError(Exception):
	"""Raised when the record store cannot read or write a record."""

class RecordStore:
	"""In-memory table store with the get/insert/update/select surface of the hosted backend.

	Tables keep insertion order, so ``newest_first`` selects walk the table backwards.
	"""

	def __init__(self) -> None:
		self.tables: Dict[str, Dict[str, BaseModel]] = {}

	def _table(self, table: str) -> Dict[str, BaseModel]:
		return self.tables.setdefault(table, {})

	def get(self, table: str, record_id: str) -> Optional[BaseModel]:
		return self._table(table).get(record_id)

	def insert(self, table: str, record: RecordT) -> RecordT:
		if getattr(record, "id", None) is None:
			record = record.model_copy(update={"id": str(uuid.uuid4())})
		rows = self._table(table)
		if record.id in rows:
			raise PersistenceError(f"duplicate_id:{table}:{record.id}")
		rows[record.id] = record
		return record

	def update(self, table: str, record_id: str, **changes) -> BaseModel:
		rows = self._table(table)
		current = rows.get(record_id)
		if current is None:
			raise PersistenceError(f"missing_record:{table}:{record_id}")
		updated = current.model_copy(update=changes)
		rows[record_id] = updated
		return updated

	def select(self, table: str, where: Callable[[BaseModel], bool] | None = None, newest_first: bool = False, limit: int | None = None) -> List[BaseModel]:
		rows = list(self._table(table).values())
		if newest_first:
			rows.reverse()
		if where is not None:
			rows = [r for r in rows if where(r)]
		if limit is not None:
			rows = rows[:limit]
		return rows

	def clear(self) -> None:
		self.tables.clear()

class SessionRegistry:
	"""Live session managers keyed by the id of the session each one owns."""

	def __init__(self) -> None:
		self.managers: Dict[str, "SessionManager"] = {}

	def register(self, session_id: str, manager: "SessionManager") -> None:
		self.managers[session_id] = manager

	def has_session(self, session_id: str) -> bool:
		return session_id in self.managers

	def get(self, session_id: str) -> "SessionManager":
		return self.managers[session_id]

	def remove(self, session_id: str) -> None:
		self.managers.pop(session_id, None)

	def clear(self) -> None:
		self.managers.clear()

record_store = RecordStore()
session_registry = SessionRegistry()
