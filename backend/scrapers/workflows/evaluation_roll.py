"""
Municipal evaluation roll - lookup by matricule.

Search form takes the matricule split into six fields (division, sector,
location, cav, building, local). The result list is followed to the detail
page, whose sections are read with the shared label walk:

- identification / owner / fiscal: <ul> following the section anchor
- land / building / current + previous valuation: <ul> following the <h3>
- roll period: first <strong> shaped like 2023-2024-2025
"""
import logging
import re
from typing import Any, Dict

from bs4 import BeautifulSoup

from scrapers.identity import SourceType, normalize_matricule, split_matricule
from scrapers.label_walk import field_value, list_after_anchor, list_after_heading, parse_document
from scrapers.navigator import StepContext, Workflow

logger = logging.getLogger(__name__)

EVALUATION_SEARCH_URL = "https://montreal.ca/role-evaluation-fonciere/matricule"

MATRICULE_FIELDS = ("division", "sector", "location", "cav", "building", "local")

ROLL_PERIOD_PATTERN = re.compile(r"\d{4}-\d{4}-\d{4}")

IDENTIFICATION_LABELS = {
    "address": "Adresse",
    "arrondissement": "Arrondissement",
    "lot_exclusif": "Numéro de lot",
    "usage_predominant": "Utilisation prédominante",
    "numero_unite_voisinage": "Numéro d'unité de voisinage",
    "numero_compte_foncier": "Numéro de compte foncier",
}

OWNER_LABELS = {
    "name": "Nom",
    "postal_address": "Adresse postale",
    "registration_date": "Date d'inscription au rôle",
}

LAND_LABELS = {
    "frontage": "Mesure frontale",
    "area": "Superficie",
}

BUILDING_LABELS = {
    "floors": "Nombre d'étages",
    "year": "Année de construction",
    "floor_area": "Aire d'étages",
    "physical_link": "Lien physique",
    "units": "Nombre de logements",
    "non_residential_spaces": "Nombre de locaux non résidentiels",
    "rental_rooms": "Nombre de chambres locatives",
}

CURRENT_VALUATION_LABELS = {
    "market_date": "Date de référence au marché",
    "land_value": "Valeur du terrain",
    "building_value": "Valeur du bâtiment",
    "total_value": "Valeur de l'immeuble",
}

PREVIOUS_VALUATION_LABELS = {
    "market_date": "Date de référence au marché",
    "total_value": "Valeur de l'immeuble au rôle antérieur",
}

FISCAL_LABELS = {
    "taxable_value": "Valeur imposable",
    "non_taxable_value": "Valeur non imposable",
}


def _read_section(container, labels: Dict[str, str]) -> Dict[str, str]:
    known = labels.values()
    return {key: field_value(container, label, known) for key, label in labels.items()}


def extract_evaluation(soup: BeautifulSoup, matricule: str) -> Dict[str, Any]:
    """
    Read every section of an evaluation detail page.

    Missing sections or labels come back as empty strings; the curator
    decides what is parseable.
    """
    identification = _read_section(list_after_anchor(soup, "identification"), IDENTIFICATION_LABELS)
    identification["lot_commun"] = ""

    owner = _read_section(list_after_anchor(soup, "proprietaires"), OWNER_LABELS)
    owner.update({"status": "", "special_conditions": ""})

    land = _read_section(list_after_heading(soup, "Caractéristiques du terrain"), LAND_LABELS)

    building = _read_section(list_after_heading(soup, "Caractéristiques du bâtiment"), BUILDING_LABELS)
    building["construction_type"] = ""

    current = _read_section(list_after_heading(soup, "Rôle courant"), CURRENT_VALUATION_LABELS)
    previous = _read_section(list_after_heading(soup, "Rôle antérieur"), PREVIOUS_VALUATION_LABELS)

    fiscal = _read_section(list_after_anchor(soup, "repartition"), FISCAL_LABELS)
    caption = soup.select_one("table caption")
    fiscal["tax_category"] = caption.get_text(" ").strip() if caption else ""

    roll_period = ""
    for strong in soup.find_all("strong"):
        text = strong.get_text(" ").strip()
        if ROLL_PERIOD_PATTERN.search(text):
            roll_period = text
            break

    return {
        "matricule": matricule,
        "identification": identification,
        "owner": owner,
        "land": land,
        "building": building,
        "valuation": {"current": current, "previous": previous},
        "fiscal": fiscal,
        "metadata": {"roll_period": roll_period, "data_date": ""},
    }


class EvaluationRollWorkflow(Workflow):
    """Evaluation roll lookup; local slowed Firefox session."""

    name = "evaluation_roll"
    source_type = SourceType.EVALUATION_ROLL
    start_url = EVALUATION_SEARCH_URL
    browser_type = "firefox"

    def natural_key(self, query: str) -> str:
        return normalize_matricule(query)

    def navigate_search(self, ctx: StepContext, query: str):
        ctx.page.goto(self.start_url, wait_until="networkidle", timeout=ctx.timeout_ms)
        ctx.wait_out_challenge('[data-test="division"] input', self.challenge_markers)
        ctx.remove(".modal", ".modal-backdrop")
        ctx.page.wait_for_selector('[data-test="division"] input', timeout=ctx.timeout_ms)

    def submit_search(self, ctx: StepContext, query: str):
        parts = split_matricule(query)
        for field_name, value in zip(MATRICULE_FIELDS, parts):
            ctx.page.locator(f'[data-test="{field_name}"] input').fill(value)
        # Client-side validation flashes an error banner while typing
        ctx.settle()
        ctx.remove(".alert-danger")
        ctx.page.locator('[data-test="submit"]').click()
        ctx.page.wait_for_url("**/liste**", timeout=ctx.timeout_ms)

    def select_result(self, ctx: StepContext, query: str):
        ctx.page.locator('[data-test="button"]').first.click()

    def navigate_detail(self, ctx: StepContext, query: str):
        ctx.page.wait_for_url("**/resultat**", timeout=ctx.timeout_ms)
        ctx.page.wait_for_selector("#identification", timeout=ctx.timeout_ms)

    def extract(self, ctx: StepContext, query: str) -> Dict[str, Any]:
        soup = parse_document(ctx.page.content())
        payload = extract_evaluation(soup, self.natural_key(query))
        logger.info(
            f"[{payload['matricule']}] Extracted evaluation: "
            f"{payload['identification'].get('address') or 'no address'}"
        )
        return payload
