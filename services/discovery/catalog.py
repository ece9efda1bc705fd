"""Regions and business categories the discovery run iterates over."""

from typing import Dict, List

from pydantic import BaseModel


class Region(BaseModel):
    """A state with its output tab and the cities searched inside it."""

    key: str
    name: str
    tab: str
    slug: str
    localities: List[str]


REGIONS: Dict[str, Region] = {
    "AZ": Region(
        key="AZ", name="Arizona", tab="Arizona", slug="az",
        localities=[
            "Phoenix", "Scottsdale", "Tempe", "Mesa", "Chandler", "Gilbert",
            "Glendale", "Peoria", "Surprise", "Tucson", "Flagstaff", "Yuma",
            "Goodyear", "Buckeye", "Avondale",
        ],
    ),
    "NV": Region(
        key="NV", name="Nevada", tab="Nevada", slug="nv",
        localities=[
            "Las Vegas", "Henderson", "Reno", "North Las Vegas", "Sparks",
            "Carson City", "Mesquite", "Boulder City", "Elko", "Fernley",
        ],
    ),
    "OH": Region(
        key="OH", name="Ohio", tab="Ohio", slug="oh",
        localities=[
            "Columbus", "Cleveland", "Cincinnati", "Toledo", "Akron", "Dayton",
            "Canton", "Youngstown", "Dublin", "Westerville", "Mason", "Parma",
        ],
    ),
    "ID": Region(
        key="ID", name="Idaho", tab="Idaho", slug="id",
        localities=[
            "Boise", "Meridian", "Nampa", "Caldwell", "Idaho Falls", "Pocatello",
            "Twin Falls", "Coeur d'Alene", "Lewiston", "Eagle",
        ],
    ),
    "WA": Region(
        key="WA", name="Washington", tab="Washington", slug="wa",
        localities=[
            "Seattle", "Spokane", "Tacoma", "Vancouver", "Bellevue", "Kent",
            "Everett", "Renton", "Kirkland", "Redmond", "Olympia", "Bellingham",
        ],
    ),
}

OTHER_TAB = "Other"

CATEGORIES: List[str] = [
    # Local services
    "plumber", "electrician", "dentist", "restaurant", "auto repair", "salon",
    "law firm", "accountant", "real estate agent", "roofing", "hvac",
    "cleaning service", "landscaping", "insurance agent", "veterinarian",
    "fitness", "photography", "marketing agency", "construction", "mechanic",
    "chiropractor", "bakery", "florist", "pet grooming", "daycare", "tutoring",
    "printing", "tailor", "locksmith", "moving company",
    # Retail
    "boutique", "jewelry store", "furniture store", "sporting goods", "pet store",
    "gift shop", "wine shop", "supplement store", "thrift store", "consignment shop",
    # Food & beverage
    "coffee shop", "brewery", "catering", "food truck", "juice bar",
    # Health & wellness
    "med spa", "dermatologist", "physical therapy", "optometrist",
    "mental health counselor", "massage therapist",
    # Professional services
    "financial advisor", "mortgage broker", "staffing agency", "IT services",
    "web design", "commercial cleaning",
    # Home services
    "garage door", "pest control", "fence company", "pool service",
    "solar installer", "window cleaning", "tree service", "pressure washing",
]

# Yellow Pages listing slugs where the category name doesn't pluralize cleanly
YP_SLUGS: Dict[str, str] = {
    "plumber": "plumbers", "electrician": "electricians", "dentist": "dentists",
    "restaurant": "restaurants", "auto repair": "auto-repair-service",
    "salon": "beauty-salons", "law firm": "attorneys", "accountant": "accountants",
    "real estate agent": "real-estate-agents", "roofing": "roofing-contractors",
    "hvac": "air-conditioning-service-repair", "cleaning service": "cleaning-services",
    "landscaping": "landscape-contractors", "insurance agent": "insurance",
    "veterinarian": "veterinary-clinics-hospitals", "fitness": "health-clubs",
    "photography": "photographers", "marketing agency": "marketing-consultants",
    "construction": "general-contractors", "mechanic": "auto-repair-service",
    "chiropractor": "chiropractors", "bakery": "bakeries", "florist": "florists",
    "pet grooming": "pet-grooming", "daycare": "child-care-consultants",
    "tutoring": "tutoring", "printing": "printing-services", "tailor": "tailors",
    "locksmith": "locks-locksmiths", "moving company": "movers",
    "boutique": "boutiques", "jewelry store": "jewelers",
    "furniture store": "furniture-stores", "sporting goods": "sporting-goods",
    "pet store": "pet-shops", "gift shop": "gift-shops", "wine shop": "wine",
    "supplement store": "health-food-stores", "thrift store": "thrift-shops",
    "consignment shop": "consignment-shops", "coffee shop": "coffee-shops",
    "brewery": "breweries", "catering": "caterers", "food truck": "food-trucks",
    "juice bar": "juice-bars", "med spa": "medical-spas",
    "dermatologist": "dermatologists", "physical therapy": "physical-therapists",
    "optometrist": "optometrists", "mental health counselor": "counseling-services",
    "massage therapist": "massage-therapists", "financial advisor": "financial-advisors",
    "mortgage broker": "mortgage-brokers", "staffing agency": "employment-agencies",
    "IT services": "computer-network-design", "web design": "web-design",
    "commercial cleaning": "janitorial-service", "garage door": "garage-doors",
    "pest control": "pest-control-services", "fence company": "fence-contractors",
    "pool service": "swimming-pool-service-repair",
    "solar installer": "solar-energy-contractors", "window cleaning": "window-cleaning",
    "tree service": "tree-service", "pressure washing": "pressure-washing-service",
}


def yp_slug(category: str) -> str:
    """Yellow Pages path slug for a category."""
    return YP_SLUGS.get(category) or category.lower().replace(" ", "-") + "s"


def resolve_regions(selector: str) -> List[Region]:
    """Parse 'ALL' or a comma-separated list of region keys.

    Raises:
        ValueError: If a key is unknown
    """
    if not selector or selector.strip().upper() == "ALL":
        return list(REGIONS.values())
    regions = []
    for key in selector.split(","):
        key = key.strip().upper()
        if not key:
            continue
        if key not in REGIONS:
            available = ", ".join(REGIONS.keys())
            raise ValueError(f"Unknown state: '{key}'. Available: {available} or ALL")
        regions.append(REGIONS[key])
    return regions


def resolve_categories(selector: str | None) -> List[str]:
    """Parse a comma-separated category filter, or return all categories."""
    if not selector:
        return list(CATEGORIES)
    return [c.strip() for c in selector.split(",") if c.strip()]


def tab_for(region_key: str, region_name: str = "") -> str:
    """Output tab for an entity, by region key first and then by region name."""
    if region_key in REGIONS:
        return REGIONS[region_key].tab
    lowered = (region_name or "").lower()
    for region in REGIONS.values():
        if region.name.lower() == lowered:
            return region.tab
    return OTHER_TAB
