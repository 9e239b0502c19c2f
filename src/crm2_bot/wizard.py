"""Step-by-step entry wizard.

Each conversation walks a fixed list of steps (see ``sessions.STEPS``). Input
for the current step is validated and normalized; a bad value re-prompts the
same step, a good one advances. The comment step commits the whole record to
the store and ends the session.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Optional

from pydantic import ValidationError

from crm2_bot.errors import EntryValidationError, ReferenceListEmpty, StoreError
from crm2_bot.models import INCOME_STATUSES, INCOME_TYPES, ExpenseEntry, IncomeEntry
from crm2_bot.parsing import (
    ReferencePolicy,
    format_date,
    is_skip_comment,
    match_option,
    normalize_currency,
    normalize_geo,
    parse_amount,
    parse_date,
)
from crm2_bot.sessions import Mode, SessionRepository, Step, WizardSession
from crm2_bot.store import EntryStore

logger = logging.getLogger(__name__)

CANCEL_TEXT = "❌ Отмена ввода"
CANCEL_COMMAND = "/cancel"
TODAY_TEXT = "Сегодня"
SKIP_COMMENT_TEXT = "Без комментария"

STORE_FAILURE_TEXT = "❌ Не удалось обратиться к таблице, ввод сброшен. Попробуйте позже."


class ReplyKind(str, Enum):
    PROMPT = "prompt"
    ERROR = "error"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class WizardReply:
    kind: ReplyKind
    text: str
    options: list[str] = field(default_factory=list)
    row: Optional[int] = None

    @property
    def finished(self) -> bool:
        return self.kind in (ReplyKind.DONE, ReplyKind.CANCELLED, ReplyKind.FAILED)


def format_amount(value: float) -> str:
    return ("%.2f" % value).rstrip("0").rstrip(".")


class Wizard:
    def __init__(
        self,
        store: EntryStore,
        sessions: SessionRepository,
        policy: ReferencePolicy,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.sessions = sessions
        self.policy = policy
        self.today = today

    def is_active(self, conversation_id) -> bool:
        return conversation_id in self.sessions

    @staticmethod
    def is_cancel(text: str) -> bool:
        return (text or "").strip() in (CANCEL_TEXT, CANCEL_COMMAND)

    async def start(self, conversation_id, mode: Mode) -> WizardReply:
        session = self.sessions.start(conversation_id, mode)
        return await self._prompt(session)

    def cancel(self, conversation_id) -> WizardReply:
        self.sessions.clear(conversation_id)
        return WizardReply(ReplyKind.CANCELLED, "Ок, отменил ввод.")

    async def handle(self, conversation_id, user_id, text: str) -> Optional[WizardReply]:
        """Feed one message into the conversation's session; None when no wizard is running."""
        session = self.sessions.get(conversation_id)
        if session is None:
            return None
        if self.is_cancel(text):
            return self.cancel(conversation_id)

        text = (text or "").strip()
        try:
            try:
                value = await self._parse(session.step, text)
            except EntryValidationError as e:
                prompt = await self._prompt(session)
                return WizardReply(ReplyKind.ERROR, str(e), options=prompt.options)

            session.data[session.step.value] = value
            following = session.next_step()
            if following is None:
                return await self._commit(conversation_id, user_id, session)
            session.step = following
            return await self._prompt(session)
        except ReferenceListEmpty as e:
            self.sessions.clear(conversation_id)
            return WizardReply(ReplyKind.FAILED, f"❌ {e}")
        except StoreError as e:
            logger.error(f"Wizard for chat {conversation_id} aborted: {e}")
            self.sessions.clear(conversation_id)
            return WizardReply(ReplyKind.FAILED, STORE_FAILURE_TEXT)

    # ── Steps ────────────────────────────────────────────────────────────

    async def _parse(self, step: Step, text: str):
        if step is Step.DATE:
            return parse_date(text, self.today())
        if step is Step.PAYEE:
            if not text:
                raise EntryValidationError("Платёжка не может быть пустой. Введите снова.")
            return text
        if step is Step.CATEGORY:
            return self.policy.resolve(text, await self.store.get_types(), "Тип расхода")
        if step is Step.GEO:
            return normalize_geo(text)
        if step is Step.STATUS:
            status = match_option(text, INCOME_STATUSES)
            if status is None:
                raise EntryValidationError("Выберите: " + " / ".join(INCOME_STATUSES) + ".")
            return status
        if step is Step.INCOME_TYPE:
            income_type = match_option(text, INCOME_TYPES)
            if income_type is None:
                raise EntryValidationError("Выберите: " + " / ".join(INCOME_TYPES) + ".")
            return income_type
        if step is Step.AMOUNT:
            return parse_amount(text)
        if step is Step.CURRENCY:
            return self.policy.resolve(
                text, await self.store.get_currencies(), "Валюта", fallback=normalize_currency
            )
        if step is Step.COMMENT:
            return "" if is_skip_comment(text) else text
        raise ValueError(f"Unknown wizard step: {step}")

    async def _prompt(self, session: WizardSession) -> WizardReply:
        step = session.step
        if step is Step.DATE:
            return WizardReply(ReplyKind.PROMPT, "Дата (ДД.ММ.ГГГГ) или нажми «Сегодня»", [TODAY_TEXT])
        if step is Step.PAYEE:
            return WizardReply(ReplyKind.PROMPT, "Платёжка (AdvCash, Capitalist, Card)")
        if step is Step.CATEGORY:
            types = await self.store.get_types()
            return WizardReply(ReplyKind.PROMPT, "Тип расхода (выберите из списка или введите):", types)
        if step is Step.GEO:
            return WizardReply(ReplyKind.PROMPT, "GEO (две буквы, например UA, KZ, PL)")
        if step is Step.STATUS:
            return WizardReply(ReplyKind.PROMPT, "Статус прибыли:", list(INCOME_STATUSES))
        if step is Step.INCOME_TYPE:
            return WizardReply(ReplyKind.PROMPT, "Тип прибыли:", list(INCOME_TYPES))
        if step is Step.AMOUNT:
            return WizardReply(ReplyKind.PROMPT, "Сумма (число, точка/запятая допустимы)")
        if step is Step.CURRENCY:
            currencies = await self.store.get_currencies()
            return WizardReply(ReplyKind.PROMPT, "Валюта (выберите из списка или введите):", currencies)
        return WizardReply(
            ReplyKind.PROMPT, "Комментарий (можно пропустить: «Без комментария»)", [SKIP_COMMENT_TEXT]
        )

    # ── Commit ───────────────────────────────────────────────────────────

    async def _commit(self, conversation_id, user_id, session: WizardSession) -> WizardReply:
        data = session.data
        try:
            if session.mode is Mode.EXPENSE:
                entry = ExpenseEntry(
                    date=data["date"],
                    payee=data["payee"],
                    category=data["category"],
                    geo=data["geo"],
                    amount=data["amount"],
                    currency=data["currency"],
                    comment=data["comment"],
                )
                await self._check_references(entry.currency, category=entry.category)
                row = await self.store.append_expense(user_id, entry)
                text = (
                    f"✅ Расход добавлен (строка {row}).\n"
                    f"Дата: {format_date(entry.date)}\n"
                    f"Платёжка: {entry.payee}\n"
                    f"Тип: {entry.category}\n"
                    f"GEO: {entry.geo}\n"
                    f"Сумма: {format_amount(entry.amount)} {entry.currency}"
                )
            else:
                entry = IncomeEntry(
                    date=data["date"],
                    status=data["status"],
                    income_type=data["income_type"],
                    amount=data["amount"],
                    currency=data["currency"],
                    comment=data["comment"],
                )
                await self._check_references(entry.currency)
                row = await self.store.append_income(user_id, entry)
                text = (
                    f"✅ Прибыль добавлена (строка {row}).\n"
                    f"Дата: {format_date(entry.date)}\n"
                    f"Статус: {entry.status}\n"
                    f"Тип: {entry.income_type}\n"
                    f"Сумма: {format_amount(entry.amount)} {entry.currency}"
                )
        except (ValidationError, EntryValidationError) as e:
            logger.warning(f"Rejected {session.mode.value} entry from chat {conversation_id}: {e}")
            return WizardReply(ReplyKind.FAILED, "❌ Запись не прошла проверку и не сохранена.")
        finally:
            # StoreError propagates to handle(); the session ends in every case
            self.sessions.clear(conversation_id)

        logger.info(f"Committed {session.mode.value} entry for user {user_id} at row {row}")
        return WizardReply(ReplyKind.DONE, text, row=row)

    async def _check_references(self, currency: str, category: Optional[str] = None):
        if not self.policy.accepts(currency, await self.store.get_currencies()):
            raise EntryValidationError(f"Неизвестная валюта: {currency}")
        if category is not None and not self.policy.accepts(category, await self.store.get_types()):
            raise EntryValidationError(f"Неизвестный тип расхода: {category}")
