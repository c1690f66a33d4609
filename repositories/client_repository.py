"""
ClientRepository - Data access for clients and their outcome audit trail
"""

from typing import List, Optional, Dict
from sqlalchemy import or_, desc, func

from repositories.base_repository import BaseRepository
from revenue_database import Client, ClientOutcomeAudit


class ClientRepository(BaseRepository[Client]):
    """Repository for Client data access"""

    def __init__(self, session):
        super().__init__(session, Client)

    def find_by_token(self, token: str) -> Optional[Client]:
        """Find a client by its journey token (e.g. 'G1234')"""
        return self.find_one_by(token=token)

    def token_exists(self, token: str) -> bool:
        return self.exists(token=token)


    def list_recent(self, limit: int = 100) -> List[Client]:
        return self.session.query(self.model_class)\
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))\
            .limit(limit)\
            .all()

    def count_by_outcome(self) -> Dict[str, int]:
        """Number of clients per journey outcome"""
        rows = self.session.query(
            self.model_class.journey_outcome,
            func.count(self.model_class.id)
        ).group_by(self.model_class.journey_outcome).all()
        return {outcome: count for outcome, count in rows}

    def append_outcome_audit(self, client: Client, previous_outcome: str, new_outcome: str,
                             notes: Optional[str] = None, changed_by: str = 'admin',
                             reason: Optional[str] = None, is_override: bool = False) -> ClientOutcomeAudit:
        """Add an outcome audit row to the current transaction"""
        audit = ClientOutcomeAudit(
            client_id=client.id,
            previous_outcome=previous_outcome,
            new_outcome=new_outcome,
            notes=notes,
            changed_by=changed_by,
            reason=reason,
            is_override=is_override
        )
        self.session.add(audit)
        self.session.flush()
        return audit

    def get_outcome_audit(self, client_id: int) -> List[ClientOutcomeAudit]:
        """Outcome changes for a client, newest first"""
        return self.session.query(ClientOutcomeAudit)\
            .filter(ClientOutcomeAudit.client_id == client_id)\
            .order_by(desc(ClientOutcomeAudit.id))\
            .all()

    def search(self, query: str, limit: int = 50) -> List[Client]:
        """Search clients by token, company, contact name or email"""
        if not query:
            return []

        pattern = f'%{query}%'
        return self.session.query(self.model_class)\
            .filter(or_(
                self.model_class.token.ilike(pattern),
                self.model_class.company.ilike(pattern),
                self.model_class.contact_name.ilike(pattern),
                self.model_class.email.ilike(pattern)
            ))\
            .order_by(self.model_class.company)\
            .limit(limit)\
            .all()
