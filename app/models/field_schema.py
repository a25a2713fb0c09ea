"""Known report fields and template placeholders.

Every scalar placeholder the report template may contain is declared here,
together with the wizard section/field it is read from and, for narrative
fields, the instruction used when the text is sent for AI enhancement. The
order of REPORT_FIELDS is the order the fields are displayed in the wizard,
which is also the order enhancement tasks are processed in.
"""

from dataclasses import dataclass

DEFAULT_PROMPT_INSTRUCTION = "Convert these bullet points into a professional paragraph:"


@dataclass(frozen=True)
class FieldSpec:
    section: str
    key: str
    placeholder: str
    label: str
    prompt_instruction: str | None = None

    @property
    def enhanceable(self) -> bool:
        return self.prompt_instruction is not None


def _narrative(what: str) -> str:
    return f"Convert these bullet points into a professional paragraph {what}:"


REPORT_FIELDS: tuple[FieldSpec, ...] = (
    # Project information
    FieldSpec("project_information", "fileNumber", "file_number", "File Number"),
    FieldSpec("project_information", "dateOfCreation", "date_of_creation", "Date of Creation"),
    FieldSpec("project_information", "insuredName", "insured_name", "Insured"),
    FieldSpec("project_information", "insuredAddress", "insured_address", "Property Address"),
    FieldSpec("project_information", "dateOfLoss", "date_of_loss", "Date of Loss"),
    FieldSpec("project_information", "claimNumber", "claim_number", "Claim Number"),
    FieldSpec("project_information", "clientCompany", "client_company", "Client"),
    FieldSpec("project_information", "clientContact", "client_contact", "Client Contact"),
    FieldSpec("project_information", "engineerName", "engineer_name", "Engineer"),
    FieldSpec("project_information", "technicalReviewer", "technical_reviewer", "Technical Reviewer"),
    FieldSpec("project_information", "receivedDate", "received_date", "Received Date"),
    FieldSpec("project_information", "siteVisitDate", "site_visit_date", "Site Visit Date"),
    FieldSpec("project_information", "licenseNumber", "license_number", "License Number"),
    # Assignment scope (methodology)
    FieldSpec(
        "assignment_scope",
        "intervieweesNames",
        "interviewees_names",
        "Interviewees",
        _narrative("describing the individuals interviewed during the investigation"),
    ),
    FieldSpec(
        "assignment_scope",
        "providedDocumentsTitles",
        "provided_documents_titles",
        "Documents Reviewed",
        _narrative("describing the documents reviewed during the investigation"),
    ),
    FieldSpec(
        "assignment_scope",
        "additionalMethodologyNotes",
        "additional_methodology_notes",
        "Additional Methodology",
        _narrative("describing additional methodology and procedures used"),
    ),
    # Building & site observations
    FieldSpec("building_observations", "structureBuiltDate", "structure_built_date", "Structure Built"),
    FieldSpec("building_observations", "structureAge", "structure_age", "Structure Age"),
    FieldSpec(
        "building_observations",
        "buildingSystemDescription",
        "building_system_description",
        "Building System Description",
        "Convert these bullet points into a comprehensive professional paragraph describing the building system, "
        "construction type, and materials:",
    ),
    FieldSpec("building_observations", "frontFacingDirection", "front_facing_direction", "Front Facing Direction"),
    FieldSpec(
        "building_observations",
        "exteriorObservations",
        "exterior_observations",
        "Exterior Observations",
        "Convert these bullet points into a detailed professional paragraph describing exterior observations of the property:",
    ),
    FieldSpec(
        "building_observations",
        "interiorObservations",
        "interior_observations",
        "Interior Observations",
        "Convert these bullet points into a detailed professional paragraph describing interior observations of the property:",
    ),
    FieldSpec(
        "building_observations",
        "otherSiteObservations",
        "other_site_observations",
        "Other Site Observations",
        _narrative("describing additional site observations"),
    ),
    # Research
    FieldSpec(
        "research",
        "weatherDataSummary",
        "weather_data_summary",
        "Weather Data Summary",
        _narrative("summarizing weather data and storm events from NOAA records"),
    ),
    FieldSpec(
        "research",
        "corelogicHailSummary",
        "corelogic_hail_summary",
        "CoreLogic Hail Summary",
        _narrative("summarizing CoreLogic hail verification data"),
    ),
    FieldSpec(
        "research",
        "corelogicWindSummary",
        "corelogic_wind_summary",
        "CoreLogic Wind Summary",
        _narrative("summarizing CoreLogic wind verification data"),
    ),
    # Discussion & analysis
    FieldSpec(
        "discussion_analysis",
        "siteDiscussionAnalysis",
        "site_discussion_analysis",
        "Site Discussion & Analysis",
        "Convert these bullet points into a comprehensive professional paragraph providing technical analysis of site "
        "observations:",
    ),
    FieldSpec(
        "discussion_analysis",
        "weatherDiscussionAnalysis",
        "weather_discussion_analysis",
        "Weather Discussion & Analysis",
        _narrative("analyzing weather conditions and their impact"),
    ),
    FieldSpec(
        "discussion_analysis",
        "weatherImpactAnalysis",
        "weather_impact_analysis",
        "Weather Impact Analysis",
        _narrative("analyzing weather impact patterns and damage"),
    ),
    FieldSpec(
        "discussion_analysis",
        "recommendationsAndDiscussion",
        "recommendations_and_discussion",
        "Recommendations & Discussion",
        _narrative("providing recommendations and additional discussion"),
    ),
    # Conclusions
    FieldSpec(
        "conclusions",
        "conclusions",
        "conclusions",
        "Conclusions",
        _narrative("stating final engineering conclusions and determinations"),
    ),
)

# Placeholders computed by the assembler rather than read from the wizard.
DERIVED_PLACEHOLDERS: tuple[str, ...] = ("current_date", "report_title")

FIELDS_BY_PLACEHOLDER: dict[str, FieldSpec] = {spec.placeholder: spec for spec in REPORT_FIELDS}
FIELDS_BY_KEY: dict[str, FieldSpec] = {spec.key: spec for spec in REPORT_FIELDS}

SCALAR_PLACEHOLDERS: tuple[str, ...] = tuple(spec.placeholder for spec in REPORT_FIELDS) + DERIVED_PLACEHOLDERS

SLOT_TOKEN_SUFFIXES: tuple[str, ...] = ("exists", "image", "caption", "filename")


def slot_token(index: int, suffix: str) -> str:
    """Name of a photo slot token, e.g. ``slot_3_caption``."""
    return f"slot_{index}_{suffix}"


def slot_tokens(max_slots: int) -> list[str]:
    return [slot_token(i, suffix) for i in range(1, max_slots + 1) for suffix in SLOT_TOKEN_SUFFIXES]


def known_placeholders(max_slots: int) -> frozenset[str]:
    """Allow-list of every placeholder name the template may legitimately contain."""
    return frozenset(SCALAR_PLACEHOLDERS) | frozenset(slot_tokens(max_slots))


def prompt_instruction_for(field_type: str) -> str:
    spec = FIELDS_BY_KEY.get(field_type)
    if spec is None or spec.prompt_instruction is None:
        return DEFAULT_PROMPT_INSTRUCTION
    return spec.prompt_instruction
