"""Client model for the Gym Rewards engine."""
from typing import Optional
from datetime import datetime, date
from pydantic import BaseModel, Field, field_validator


class Client(BaseModel):
    """Gym client, as read from the client directory - Pydantic version.

    Only the age, the registration date and the active membership are
    used by the prize rules.
    """

    client_id: int = Field(..., description="Client identifier")
    first_name: Optional[str] = Field(default=None, max_length=254)
    last_name: Optional[str] = Field(default=None, max_length=254)
    email: Optional[str] = Field(
        default=None,
        max_length=254,
        description="Client's Email"
    )
    birth_date: Optional[date] = Field(
        default=None,
        description="Date of birth"
    )
    registration_date: datetime = Field(
        default_factory=datetime.now,
        description="When the client joined the gym"
    )
    membership_id: Optional[int] = Field(
        default=None,
        description="Active membership"
    )
    membership_type_id: Optional[int] = Field(
        default=None,
        description="Type of the active membership"
    )
    is_active: bool = True

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        """Basic email validation"""
        if v and '@' not in v:
            raise ValueError('must be a valid email address')
        return v

    @property
    def display_name(self) -> str:
        name = ' '.join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email or f"Client {self.client_id}"

    def age(self, on: Optional[date] = None) -> Optional[int]:
        """Age in whole years at ``on`` (today by default)."""
        if not self.birth_date:
            return None
        today = on or date.today()
        if isinstance(today, datetime):
            today = today.date()
        years = today.year - self.birth_date.year
        if (today.month, today.day) < (self.birth_date.month, self.birth_date.day):
            years -= 1
        return years

    def membership_days(self, on: Optional[datetime] = None) -> int:
        """Whole days elapsed since registration."""
        now = on or datetime.now()
        registered = self.registration_date
        if not isinstance(registered, datetime):
            registered = datetime.combine(registered, datetime.min.time())
        return (now - registered).days
