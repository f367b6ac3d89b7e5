"""Build voice-call context and claim notifications from tenant + lead data.

Runs BEFORE the call, inside the escalation engine. Everything here is a
pure function of its inputs so the same lead always yields the same
context.
"""

import re

from shared.schemas import (
    CallContext,
    ContractorType,
    LeadContact,
    TenantProfile,
)

CALCOM_BASE_URL = "https://cal.com"

SERVICE_CATEGORIES: dict[ContractorType, str] = {
    ContractorType.GENERAL: "general contracting",
    ContractorType.ROOFING: "roofing",
    ContractorType.HVAC: "HVAC and climate control",
    ContractorType.HARDSCAPING: "hardscaping and outdoor living",
    ContractorType.ADU: "ADU and accessory dwelling units",
    ContractorType.KITCHEN_BATH: "kitchen and bathroom remodeling",
    ContractorType.SIDING: "siding and exterior",
    ContractorType.DECKING: "decking and outdoor structures",
    ContractorType.PLUMBING: "plumbing",
    ContractorType.ELECTRICAL: "electrical",
    ContractorType.PAINTING: "painting and finishing",
    ContractorType.LANDSCAPING: "landscaping",
    ContractorType.SOLAR: "solar installation",
    ContractorType.WINDOWS_DOORS: "windows and doors",
    ContractorType.FLOORING: "flooring",
    ContractorType.REMODELING: "home remodeling",
}


def service_category(contractor_type: ContractorType) -> str:
    """Human-readable service category for a contractor type."""
    return SERVICE_CATEGORIES.get(contractor_type, "home improvement")


def parse_service_list(raw: str | None) -> list[str]:
    """Split a comma-separated service list, dropping blanks."""
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def calendar_link_for(tenant: TenantProfile) -> str | None:
    """Tenant calendar URL, else a Cal.com page derived from the company name."""
    if tenant.calendar_url:
        return tenant.calendar_url
    if tenant.calcom_api_key:
        slug = re.sub(r"\s+", "-", tenant.company_name.strip().lower())
        return f"{CALCOM_BASE_URL}/{slug}/consultation"
    return None


def format_timeout(ttl_seconds: int) -> str:
    """Format a claim window for SMS display ("2min", "45s")."""
    if ttl_seconds >= 60:
        return f"{ttl_seconds // 60}min"
    return f"{ttl_seconds}s"


class ContextBuilder:
    """Builds CallContext payloads and claim SMS bodies."""

    def build(self, tenant: TenantProfile, lead: LeadContact) -> CallContext:
        """Build the context handed to the voice agent for one lead.

        Args:
            tenant: Tenant configuration (branding, tone, services, calendar).
            lead: The lead being called.

        Returns:
            CallContext ready to serialize into dispatch metadata.
        """
        category = service_category(tenant.contractor_type)
        services = parse_service_list(tenant.ai_service_list)
        services_offered = ", ".join(services) if services else category
        calendar_link = calendar_link_for(tenant)
        greeting = tenant.ai_greeting or ""

        dynamic_variables = {
            # Company context
            "brand_name": tenant.company_name,
            "company_name": tenant.company_name,
            "service_category": category,
            "services_offered": services_offered,
            "tone_style": tenant.ai_tone_style.value,
            # Lead context
            "lead_name": lead.first_name,
            "lead_full_name": lead.full_name,
            "lead_address": lead.address or "not provided",
            "lead_city": lead.city or "your area",
            "project_notes": lead.project_notes or "",
            "custom_greeting": greeting,
            # Booking
            "calendar_link": calendar_link or "",
            "has_calendar": "true" if calendar_link else "false",
        }

        return CallContext(
            lead_id=lead.id,
            tenant_id=tenant.id,
            phone=lead.phone,
            from_number=tenant.sms_from_phone or "",
            company_name=tenant.company_name,
            contractor_type=tenant.contractor_type,
            service_category=category,
            services_offered=services_offered,
            tone_style=tenant.ai_tone_style,
            custom_greeting=greeting,
            lead_first_name=lead.first_name,
            lead_full_name=lead.full_name,
            lead_address=lead.address,
            lead_city=lead.city,
            project_notes=lead.project_notes,
            calendar_link=calendar_link,
            dynamic_variables=dynamic_variables,
        )

    def claim_message(
        self,
        tenant: TenantProfile,
        lead: LeadContact,
        claim_url: str,
        ttl_seconds: int,
    ) -> str:
        """Build the SMS body sent to team members for a new lead."""
        trade = tenant.niche or service_category(tenant.contractor_type)
        lines = [
            f"New {trade} lead!",
            lead.full_name,
            lead.phone,
        ]
        if lead.city:
            lines.append(lead.city)
        lines.append("")
        lines.append(f"Claim now: {claim_url}")
        lines.append("")
        lines.append(f"{format_timeout(ttl_seconds)} until AI takes over")
        return "\n".join(lines)


_builder = ContextBuilder()


def build_context(tenant: TenantProfile, lead: LeadContact) -> CallContext:
    """Build a CallContext with the default builder."""
    return _builder.build(tenant, lead)


def build_claim_message(
    tenant: TenantProfile,
    lead: LeadContact,
    claim_url: str,
    ttl_seconds: int,
) -> str:
    """Build a claim SMS body with the default builder."""
    return _builder.claim_message(tenant, lead, claim_url, ttl_seconds)
