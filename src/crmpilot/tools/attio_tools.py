"""Attio tools shared by the CRM agents."""

from typing import Any

from pydantic import (
    BaseModel,
    Field,
)

from crmpilot.clients.attio import (
    AttioClient,
    CompanyUpdate,
    PersonInfo,
)
from crmpilot.tools import Toolset


class EmailArgs(BaseModel):
    email: str = Field(..., min_length=3, description="Email address of the person")


class ClerkIdArgs(BaseModel):
    clerkId: str = Field(..., min_length=1, description="Clerk user ID stored as user_id")


class RecordIdArgs(BaseModel):
    recordId: str = Field(..., min_length=1, description="Attio record ID")


class UpdateCompanyArgs(BaseModel):
    companyId: str = Field(..., min_length=1, description="Attio record ID of the company")
    updateObject: CompanyUpdate


def build_attio_tools(client: AttioClient) -> Toolset:
    """Return a toolset bound to *client*."""
    tools = Toolset("attio")

    @tools.tool("getPersonByEmail", EmailArgs)
    async def get_person_by_email(args: EmailArgs) -> Any:
        """Lookup a person in Attio by email."""
        return await client.get_person_by_email(args.email)

    @tools.tool("getPersonByClerkID", ClerkIdArgs)
    async def get_person_by_clerk_id(args: ClerkIdArgs) -> Any:
        """Find a person in Attio by their Clerk user ID."""
        return await client.get_person_by_clerk_id(args.clerkId)

    @tools.tool("getPersonByRecordID", RecordIdArgs)
    async def get_person_by_record_id(args: RecordIdArgs) -> Any:
        """Get a person from Attio by their Attio record ID."""
        return await client.get_person_by_record_id(args.recordId)

    @tools.tool("assertPerson", PersonInfo)
    async def assert_person(args: PersonInfo) -> Any:
        """Create or update (upsert by email) a person in Attio."""
        return await client.assert_person(args)

    @tools.tool("getCompanyByPersonEmail", EmailArgs)
    async def get_company_by_person_email(args: EmailArgs) -> Any:
        """Get the company a person belongs to, by the person's email. Null when unlinked."""
        return await client.get_company_by_person_email(args.email)

    @tools.tool("getCompanyByRecordID", RecordIdArgs)
    async def get_company_by_record_id(args: RecordIdArgs) -> Any:
        """Get a company from Attio by its record ID."""
        return await client.get_company_by_record_id(args.recordId)

    @tools.tool("updateCompany", UpdateCompanyArgs)
    async def update_company(args: UpdateCompanyArgs) -> Any:
        """Update a company in Attio; only the fields given in updateObject change."""
        return await client.update_company(args.companyId, args.updateObject)

    return tools
