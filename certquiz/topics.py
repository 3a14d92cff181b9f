from enum import Enum
from typing import Dict, List


class Topic(str, Enum):
    PRODUCTS = "Products, Value, Environment Settings, and Implementation Strategies"
    ARCHITECTURE = "System Architecture"
    MEDIA_LIFECYCLE = "Media Lifecycle Strategy and Emerging Trends"
    WIDGETS = "Widgets, Out of Box Add-ons, Custom Integrations"
    UPLOAD = "Upload and Migrate Assets"
    TRANSFORMATIONS = "Transformations"
    MEDIA_MANAGEMENT = "Media Management"
    ACCESS_CONTROL = "User, Role, and Group Management and Access Controls"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuestionStatus(str, Enum):
    ACTIVE = "active"
    REVIEW = "review"
    DELETED = "deleted"


# Certification category order, used when laying out reports.
TOPIC_ORDER: List[str] = [t.value for t in Topic]

SUBTOPICS: Dict[str, List[str]] = {
    Topic.PRODUCTS.value: [
        "Product offerings and value proposition",
        "Environment variables and account settings",
        "Implementation best practices",
        "Product capabilities and limitations",
        "Configuration options",
        "URL structure and transformation order",
    ],
    Topic.ARCHITECTURE.value: [
        "Authentication methods",
        "API integration patterns",
        "Upload workflows",
        "Delivery options",
        "CDN configurations",
        "Signed URLs",
        "Private CDNs",
        "Custom domains",
    ],
    Topic.MEDIA_LIFECYCLE.value: [
        "Asset lifecycle management",
        "Asset versioning",
        "Content freshness strategies",
        "Content expiration",
        "Adaptive streaming",
        "AI capabilities",
        "Responsive design strategies",
    ],
    Topic.WIDGETS.value: [
        "Upload widget",
        "Media library widget",
        "Video player",
        "Product gallery",
        "CMS integrations",
        "E-commerce platform integrations",
        "Add-on capabilities",
        "Customization options",
    ],
    Topic.UPLOAD.value: [
        "Upload API",
        "Upload methods",
        "Upload presets",
        "Migration strategies",
        "Asset structure planning",
        "Bulk upload options",
        "Remote fetch",
        "Auto-tagging",
    ],
    Topic.TRANSFORMATIONS.value: [
        "Image transformations",
        "Video transformations",
        "Named transformations",
        "Chained transformations",
        "Conditional transformations",
        "Format and quality optimizations",
        "Responsive breakpoints",
        "Cropping and resizing strategies",
    ],
    Topic.MEDIA_MANAGEMENT.value: [
        "Asset organization",
        "Structured metadata",
        "Tags and categories",
        "Search capabilities",
        "Access control",
        "AI categorization",
        "Moderation workflows",
    ],
    Topic.ACCESS_CONTROL.value: [
        "User management",
        "Role-based access control",
        "Permission sets",
        "Sub-accounts",
        "Project segregation",
        "Collaborative workflows",
        "Access restrictions",
    ],
}
