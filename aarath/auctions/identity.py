from pydantic import BaseModel, ConfigDict, Field


class UserIdentity(BaseModel):
    """Authenticated user plus the profile fields a display name is taken from."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    business_name: str | None = Field(default=None, alias="businessName")
    personal_name: str | None = Field(default=None, alias="personalName")
    company_name: str | None = Field(default=None, alias="companyName")

    @property
    def display_name(self) -> str:
        return self.business_name or self.personal_name or self.company_name or "Anonymous"
