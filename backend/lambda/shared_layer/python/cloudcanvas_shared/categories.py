"""cloudcanvas_shared.categories — Fixed catalog category configuration.

The order of ``AWS_CATEGORIES`` is the display order of the grouped listing.
``folder`` is the icon asset directory a category's services are seeded from.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CategoryConfig:
    id: str
    name: str
    display_name: str
    description: str
    folder: str
    enabled: bool = True

    @property
    def icon_path(self) -> str:
        return f"/aws/Category/Arch-Category_{self.id}_64.svg"


@dataclass(frozen=True)
class CloudProvider:
    id: str
    name: str
    display_name: str
    enabled: bool


AWS_CATEGORIES: List[CategoryConfig] = [
    CategoryConfig("Analytics", "Analytics", "Analytics",
                   "Data analytics and business intelligence services", "Arch_Analytics"),
    CategoryConfig("Application-Integration", "App-Integration", "Application Integration",
                   "Connect and coordinate distributed applications", "Arch_App-Integration"),
    CategoryConfig("Artificial-Intelligence", "Artificial-Intelligence", "AI & Machine Learning",
                   "Machine learning and AI services", "Arch_Artificial-Intelligence"),
    CategoryConfig("Blockchain", "Blockchain", "Blockchain",
                   "Blockchain and distributed ledger services", "Arch_Blockchain"),
    CategoryConfig("Business-Applications", "Business-Applications", "Business Applications",
                   "Enterprise business applications", "Arch_Business-Applications"),
    CategoryConfig("Cloud-Financial-Management", "Cloud-Financial-Management", "Cloud Financial Management",
                   "Cost management and billing optimization", "Arch_Cloud-Financial-Management"),
    CategoryConfig("Compute", "Compute", "Compute",
                   "Virtual servers, containers, and serverless compute", "Arch_Compute"),
    CategoryConfig("Containers", "Containers", "Containers",
                   "Container orchestration and management", "Arch_Containers"),
    CategoryConfig("Customer-Enablement", "Customer-Enablement", "Customer Enablement",
                   "Customer support and enablement services", "Arch_Customer-Enablement"),
    CategoryConfig("Database", "Database", "Database",
                   "Managed database services", "Arch_Database"),
    CategoryConfig("Developer-Tools", "Developer-Tools", "Developer Tools",
                   "Development, testing, and deployment tools", "Arch_Developer-Tools"),
    CategoryConfig("End-User-Computing", "End-User-Computing", "End User Computing",
                   "Desktop and application streaming", "Arch_End-User-Computing"),
    CategoryConfig("Front-End-Web-Mobile", "Front-End-Web-Mobile", "Frontend Web & Mobile",
                   "Frontend development and mobile services", "Arch_Front-End-Web-Mobile"),
    CategoryConfig("Games", "Games", "Game Tech",
                   "Game development and hosting services", "Arch_Games"),
    CategoryConfig("Internet-of-Things", "Internet-of-Things", "Internet of Things",
                   "IoT device management and analytics", "Arch_Internet-of-Things"),
    CategoryConfig("Management-Governance", "Management-Governance", "Management & Governance",
                   "Cloud management and governance tools", "Arch_Management-Governance"),
    CategoryConfig("Media-Services", "Media-Services", "Media Services",
                   "Media processing and streaming services", "Arch_Media-Services"),
    CategoryConfig("Migration-Modernization", "Migration-Modernization", "Migration & Transfer",
                   "Application migration and modernization", "Arch_Migration-Modernization"),
    CategoryConfig("Networking-Content-Delivery", "Networking-Content-Delivery", "Networking & Content Delivery",
                   "Networking and content delivery services", "Arch_Networking-Content-Delivery"),
    CategoryConfig("Quantum-Technologies", "Quantum-Technologies", "Quantum Technologies",
                   "Quantum computing services", "Arch_Quantum-Technologies"),
    CategoryConfig("Satellite", "Satellite", "Satellite",
                   "Satellite communication services", "Arch_Satellite"),
    CategoryConfig("Security-Identity-Compliance", "Security-Identity-Compliance", "Security, Identity & Compliance",
                   "Security, identity, and compliance services", "Arch_Security-Identity-Compliance"),
    CategoryConfig("Serverless", "Serverless", "Serverless",
                   "Serverless computing services", "Arch_Serverless"),
    CategoryConfig("Storage", "Storage", "Storage",
                   "Cloud storage services", "Arch_Storage"),
]

CLOUD_PROVIDERS: List[CloudProvider] = [
    CloudProvider("aws", "AWS", "Amazon Web Services", True),
    CloudProvider("azure", "Azure", "Microsoft Azure", False),
    CloudProvider("gcp", "GCP", "Google Cloud Platform", False),
]

_BY_ID: Dict[str, CategoryConfig] = {c.id: c for c in AWS_CATEGORIES}

# Asset folders present in the icon pack that map onto a configured category.
FOLDER_TO_CATEGORY: Dict[str, str] = {c.folder: c.id for c in AWS_CATEGORIES}
FOLDER_TO_CATEGORY["Arch_General-Icons"] = "General-Icons"

# Seeded records may carry a category that is not displayed as a group.
KNOWN_CATEGORY_IDS = frozenset(_BY_ID) | frozenset(FOLDER_TO_CATEGORY.values())


def is_known_category(category_id: str) -> bool:
    return category_id in KNOWN_CATEGORY_IDS


def get_category(category_id: str) -> Optional[CategoryConfig]:
    return _BY_ID.get(category_id)


def get_category_by_name(name: str) -> Optional[CategoryConfig]:
    return next((c for c in AWS_CATEGORIES if c.name == name), None)


def get_enabled_categories() -> List[CategoryConfig]:
    return [c for c in AWS_CATEGORIES if c.enabled]


def get_enabled_providers() -> List[CloudProvider]:
    return [p for p in CLOUD_PROVIDERS if p.enabled]
