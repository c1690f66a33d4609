"""
ClientService - Client creation, token lookup and status transitions.

A new client gets a unique journey token (one uppercase letter and four
digits, e.g. G1234) and a first version of each of the four journey pages.
"""

import logging
import re
import secrets
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError

from services.common.result import Result
from services.common.errors import RevenueEngineError, ValidationError, ConflictError, NotFoundError
from services.enums import PageType, ClientStatus, JourneyOutcome, VersionOutcome, enum_values
from services.journey_defaults import default_page_content
from repositories.client_repository import ClientRepository
from repositories.content_version_repository import ContentVersionRepository
from revenue_database import Client

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r'^[A-Z]\d{4}$')
DEFAULT_TOKEN_PREFIX = 'G'
DEFAULT_MAX_TOKEN_ATTEMPTS = 100

# Status changes allowed from each status; archived is final
STATUS_TRANSITIONS = {
    ClientStatus.PENDING.value: {ClientStatus.ACTIVATED.value, ClientStatus.ARCHIVED.value},
    ClientStatus.ACTIVATED.value: {ClientStatus.ARCHIVED.value},
    ClientStatus.ARCHIVED.value: set(),
}


def validate_token(token: Optional[str]) -> str:
    """
    Raises:
        ValidationError: If the token is not one uppercase letter and 4 digits
    """
    if not isinstance(token, str) or not TOKEN_PATTERN.match(token):
        raise ValidationError(
            f"Invalid client token '{token}'. Expected one uppercase letter followed by 4 digits (e.g. G1234)",
            field='token'
        )
    return token


class ClientService:
    """Service for client management"""

    def __init__(self,
                 client_repository: ClientRepository,
                 content_version_repository: ContentVersionRepository,
                 max_token_attempts: int = DEFAULT_MAX_TOKEN_ATTEMPTS,
                 token_prefix: str = DEFAULT_TOKEN_PREFIX):
        self.client_repository = client_repository
        self.content_version_repository = content_version_repository
        self.max_token_attempts = max_token_attempts
        self.token_prefix = token_prefix

    def generate_token(self) -> str:
        return f"{self.token_prefix}{secrets.randbelow(10000):04d}"

    def create_client(self, company: str, contact_name: Optional[str] = None, email: Optional[str] = None,
                      hypothesis: Optional[str] = None, token: Optional[str] = None) -> Result[Client]:
        """
        Create a client with seeded journey pages.

        A caller-supplied token is validated and must be free. Otherwise a
        token is generated; collisions are retried up to max_token_attempts.
        """
        try:
            company = (company or '').strip()
            hypothesis = (hypothesis or '').strip()
            if not company:
                raise ValidationError("Company name is required", field='company')
            if not hypothesis:
                raise ValidationError("A journey hypothesis is required", field='hypothesis')
            if email and '@' not in email:
                raise ValidationError(f"Invalid email address '{email}'", field='email')
            if token is not None:
                validate_token(token)
        except ValidationError as e:
            return Result.from_error(e)

        attempts = 1 if token is not None else self.max_token_attempts

        for attempt in range(1, attempts + 1):
            candidate = token if token is not None else self.generate_token()
            if self.client_repository.token_exists(candidate):
                logger.debug(f"Token {candidate} already taken (attempt {attempt}/{attempts})")
                continue

            try:
                client = self._create_with_pages(candidate, company, hypothesis, contact_name, email)
            except ConflictError:
                logger.warning(f"Token {candidate} was claimed concurrently (attempt {attempt}/{attempts})")
                continue
            except SQLAlchemyError as e:
                self.client_repository.rollback()
                logger.error(f"Database error creating client {company}: {e}")
                return Result.failure(f"Database error creating client: {e}", code='DATABASE_ERROR')

            logger.info(f"Created client {client.token} ({company})")
            return Result.success(client, metadata={'attempts': attempt})

        if token is not None:
            return Result.from_error(ConflictError(f"Client token {token} is already in use", token=token))
        return Result.from_error(ConflictError(
            f"Could not generate a unique client token after {attempts} attempts",
            attempts=attempts
        ))

    def _create_with_pages(self, token: str, company: str, hypothesis: str,
                           contact_name: Optional[str], email: Optional[str]) -> Client:
        client = self.client_repository.create(
            token=token,
            company=company,
            contact_name=contact_name,
            email=email,
            hypothesis=hypothesis,
            status=ClientStatus.PENDING.value,
            journey_outcome=JourneyOutcome.PENDING.value
        )
        for page_type in enum_values(PageType):
            self.content_version_repository.create(
                client_id=client.id,
                page_type=page_type,
                content=default_page_content(page_type),
                hypothesis=hypothesis,
                outcome=VersionOutcome.PENDING.value,
                is_current=True,
                version_number=1,
                created_by='system'
            )
        self.client_repository.commit()
        return client

    def get_client_by_token(self, token: str) -> Result[Client]:
        try:
            validate_token(token)
            client = self.client_repository.find_by_token(token)
            if client is None:
                raise NotFoundError(f"Client {token} not found", token=token)
        except RevenueEngineError as e:
            return Result.from_error(e)
        return Result.success(client)

    def get_client(self, client_id: int) -> Result[Client]:
        try:
            return Result.success(self.client_repository.get_by_id_or_raise(client_id))
        except NotFoundError as e:
            return Result.from_error(e)

    def list_clients(self, search: Optional[str] = None, limit: int = 100) -> Result[List[Client]]:
        if search:
            return Result.success(self.client_repository.search(search, limit=limit))
        return Result.success(self.client_repository.list_recent(limit=limit))

    def update_status(self, client_id: int, status: str) -> Result[Client]:
        """Soft status transition; clients are never deleted"""
        try:
            if status not in enum_values(ClientStatus):
                raise ValidationError(
                    f"Invalid status '{status}'. Must be one of: {', '.join(enum_values(ClientStatus))}",
                    field='status'
                )
            client = self.client_repository.get_by_id_or_raise(client_id)
            if status != client.status and status not in STATUS_TRANSITIONS[client.status]:
                raise ValidationError(
                    f"Cannot move client {client.token} from '{client.status}' to '{status}'",
                    field='status'
                )
            self.client_repository.update(client, status=status)
            self.client_repository.commit()
        except RevenueEngineError as e:
            return Result.from_error(e)
        return Result.success(client)
