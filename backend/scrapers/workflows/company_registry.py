"""
Business registry - company profile by registry number (NEQ) or name.

The registry sits behind an anti-bot interstitial, so sessions go through
the residential-proxy endpoint when one is configured. Search results list
every company matching the query; the first one whose status reads
"Immatriculée" (registered, active) is opened.

The detail page extraction is a pure function over the rendered HTML so
the manual-capture route can run it on HTML pasted from a browser.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from ingestion.errors import IdentityMissing, NavigationError
from scrapers.identity import SourceType, normalize_neq
from scrapers.label_walk import (
    container_of,
    field_value,
    find_label,
    find_labels,
    normalize_label,
    parse_document,
)
from scrapers.navigator import StepContext, Workflow

logger = logging.getLogger(__name__)

REGISTRY_SEARCH_URL = (
    "https://www.registreentreprises.gouv.qc.ca/REQNA/GR/GR03/"
    "GR03A71.RechercheRegistre.MVC/GR03A71"
)

STATUS_LABEL = "Statut de l'entreprise"
ACTIVE_STATUS = "Immatriculée"
NON_PUBLISHABLE = "non publiable"

NEQ_LABELS = ("Numéro d'entreprise du Québec (NEQ)", "Numéro d'entreprise du Québec")
NEQ_BODY_PATTERN = re.compile(r"\b(\d{10})\b")

IDENTIFICATION_LABELS = {
    "name": "Nom",
    "status": "Statut",
    "domicile_address": "Adresse",
    "registration_date": "Date d'immatriculation",
    "status_date": "Date de mise à jour du statut",
}

SHAREHOLDER_POSITIONS = (
    "Premier actionnaire",
    "Deuxième actionnaire",
    "Troisième actionnaire",
    "Quatrième actionnaire",
    "Cinquième actionnaire",
)

PERSON_LABELS = (
    "Nom", "Nom de famille", "Prénom", "Fonctions actuelles",
    "Adresse du domicile", "Adresse professionnelle", "Type d'associé",
)


def _clean_address(value: str) -> str:
    if value and NON_PUBLISHABLE in value.lower():
        return ""
    return value or ""


def _entry_container(label: Tag, levels: int) -> Tag:
    """The list holding a person's fields, or the label's ancestor when unlisted."""
    return label.find_parent("ul") or container_of(label, levels)


def _person_name(container: Tag) -> str:
    last_name = field_value(container, "Nom de famille", PERSON_LABELS)
    first_name = field_value(container, "Prénom", PERSON_LABELS)
    if last_name or first_name:
        return f"{first_name} {last_name}".strip()
    return field_value(container, "Nom", PERSON_LABELS)


def _in_history(element: Tag) -> bool:
    accordion = element.find_parent(class_="accordion")
    if accordion is None:
        return False
    heading = accordion.select_one(".h b, .h strong")
    return heading is not None and "Historique" in heading.get_text()


def extract_neq(soup: BeautifulSoup) -> str:
    for label in NEQ_LABELS:
        value = field_value(soup, label)
        if value:
            match = NEQ_BODY_PATTERN.search(value.replace(" ", ""))
            return match.group(1) if match else value.strip()
    body = soup.body or soup
    match = NEQ_BODY_PATTERN.search(body.get_text(" "))
    return match.group(1) if match else ""


def extract_shareholders(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    """Numbered shareholders of a corporation, or partners of a partnership."""
    shareholders: List[Dict[str, Any]] = []

    if find_label(soup, "Actionnaires") is not None:
        for i, position_label in enumerate(SHAREHOLDER_POSITIONS):
            label = find_label(soup, position_label)
            if label is None:
                break
            container = _entry_container(label, 1)
            name = _person_name(container)
            if not name:
                continue
            shareholders.append({
                "name": name,
                "address": field_value(container, "Adresse du domicile", PERSON_LABELS),
                "is_majority": "majoritaire" in container.get_text(" "),
                "position": i + 1,
            })
        return shareholders

    if find_label(soup, "Associés") is not None:
        for label in find_labels(soup, "Type d'associé"):
            container = _entry_container(label, 1)
            name = _person_name(container)
            if not name:
                continue
            address = (
                field_value(container, "Adresse du domicile", PERSON_LABELS)
                or field_value(container, "Adresse professionnelle", PERSON_LABELS)
            )
            partner_type = field_value(container, "Type d'associé", PERSON_LABELS)
            shareholders.append({
                "name": name,
                "address": _clean_address(address),
                # General partners carry control like a majority shareholder
                "is_majority": partner_type == "Commandité",
                "position": len(shareholders) + 1,
            })

    return shareholders


def extract_administrators(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    """Current administrators, one per 'Nom de famille' entry."""
    if find_label(soup, "Administrateurs") is None and not find_labels(soup, "Fonctions actuelles"):
        return []

    administrators: List[Dict[str, Any]] = []
    for label in find_labels(soup, "Nom de famille"):
        if _in_history(label):
            continue
        container = _entry_container(label, 2)
        if find_label(container, "Fonctions actuelles") is None:
            continue
        last_name = field_value(container, "Nom de famille", PERSON_LABELS)
        if not last_name:
            continue
        first_name = field_value(container, "Prénom", PERSON_LABELS)
        administrators.append({
            "name": f"{first_name} {last_name}".strip(),
            "position_title": field_value(container, "Fonctions actuelles", PERSON_LABELS),
            "domicile_address": _clean_address(
                field_value(container, "Adresse du domicile", PERSON_LABELS)
            ),
            "professional_address": _clean_address(
                field_value(container, "Adresse professionnelle", PERSON_LABELS)
            ),
            "position_order": len(administrators) + 1,
        })
    return administrators


def extract_company_profile(soup: BeautifulSoup, source_url: str = "") -> Dict[str, Any]:
    """
    Read a company detail page into the raw company payload.

    Raises:
        IdentityMissing: no registry number on the page
    """
    neq = extract_neq(soup)
    if not neq:
        raise IdentityMissing("Could not find registry number (NEQ) on page")

    known = IDENTIFICATION_LABELS.values()
    identification = {
        key: field_value(soup, label, known) for key, label in IDENTIFICATION_LABELS.items()
    }

    profile = {
        "neq": neq,
        "identification": identification,
        "shareholders": extract_shareholders(soup),
        "administrators": extract_administrators(soup),
        "economic_activity": {
            "cae_code": field_value(soup, "Code d'activité économique"),
            "cae_description": field_value(soup, "Activité"),
        },
        "source_url": source_url,
    }
    logger.info(
        f"[{neq}] Extracted company {identification['name'] or '(unnamed)'}: "
        f"{len(profile['shareholders'])} shareholder(s), "
        f"{len(profile['administrators'])} administrator(s)"
    )
    return profile


class CompanyRegistryWorkflow(Workflow):
    """
    Registry lookup. Queries that look like a registry number search by
    number; anything else searches by company name.
    """

    name = "company_registry"
    source_type = SourceType.COMPANY_REGISTRY
    start_url = REGISTRY_SEARCH_URL
    browser_type = "chromium"
    prefers_proxy = True

    def natural_key(self, query: str) -> str:
        query = (query or "").strip()
        if not query:
            raise IdentityMissing("Company search requires a registry number or a name")
        try:
            return normalize_neq(query)
        except IdentityMissing:
            return query

    def navigate_search(self, ctx: StepContext, query: str):
        ctx.page.goto(self.start_url, wait_until="networkidle", timeout=ctx.timeout_ms)
        ctx.wait_out_challenge('input[type="text"]', self.challenge_markers)
        ctx.remove(".modal", ".modal-backdrop")
        ctx.page.wait_for_selector('input[type="text"]', timeout=ctx.timeout_ms)

    def submit_search(self, ctx: StepContext, query: str):
        ctx.page.locator('input[type="text"]').first.fill(self.natural_key(query))
        ctx.human_pause()

        terms = ctx.page.locator('input[type="checkbox"]').first
        if terms.count() > 0:
            terms.check()
            ctx.human_pause()

        ctx.page.locator('button:has-text("Rechercher")').first.click()
        ctx.page.wait_for_load_state("networkidle", timeout=ctx.timeout_ms)

    def select_result(self, ctx: StepContext, query: str):
        status_labels = ctx.page.locator("text=/Statut\\s+de\\s+l.entreprise/i")
        status_labels.first.wait_for(timeout=ctx.timeout_ms)

        for i, label in enumerate(status_labels.all()):
            container = label.locator("xpath=..").locator("xpath=..")
            if not is_active_status(result_status(container.inner_html())):
                continue
            consult = container.locator('button:has-text("Consulter")').or_(
                container.locator('a:has-text("Consulter")')
            ).first
            if consult.count() > 0:
                logger.info(f"[{ctx.natural_key}] Opening active company at position {i + 1}")
                consult.click()
                return

        raise NavigationError(
            f"No active ({ACTIVE_STATUS}) company found in results",
            ctx.natural_key,
            ctx.step.value,
        )

    def navigate_detail(self, ctx: StepContext, query: str):
        ctx.page.wait_for_load_state("networkidle", timeout=ctx.timeout_ms)
        ctx.page.locator("text=/Numéro\\s+d.entreprise\\s+du\\s+Québec/i").first.wait_for(
            timeout=ctx.timeout_ms
        )

    def extract(self, ctx: StepContext, query: str) -> Dict[str, Any]:
        soup = parse_document(ctx.page.content())
        return extract_company_profile(soup, ctx.page.url)


def result_status(html: str) -> str:
    """Status cell of one search result ('' when absent)."""
    return field_value(parse_document(html), STATUS_LABEL)


def is_active_status(status: Optional[str]) -> bool:
    return normalize_label(status) == normalize_label(ACTIVE_STATUS)


def looks_like_neq(query: Optional[str]) -> bool:
    try:
        normalize_neq(query or "")
    except IdentityMissing:
        return False
    return True
