"""
GPT product catalog configuration.

The single place that declares which Custom GPTs are for sale, what they
cost and where they live. Prices here are authoritative; a client-supplied
amount is never used.
"""

import re
from dataclasses import dataclass
from decimal import Decimal

from storefront.exceptions import ProductNotFoundError


@dataclass(frozen=True)
class Product:
    """Catalog entry for one purchasable Custom GPT."""

    product_id: str
    name: str
    price: Decimal
    gpt_url: str
    description: str
    icon: str
    currency: str = "usd"

    def __post_init__(self) -> None:
        """Validate product configuration."""
        if not self.product_id:
            raise ValueError("Product ID required")
        if not self.name:
            raise ValueError("Name required")
        if self.price <= 0:
            raise ValueError(f"Price must be positive: {self.price}")
        if self.price != self.price.quantize(Decimal("0.01")):
            raise ValueError(f"Price must have at most two decimals: {self.price}")
        if not self.gpt_url.startswith("https://"):
            raise ValueError(f"GPT URL must be https: {self.gpt_url}")

    @property
    def amount_minor(self) -> int:
        """Price in minor units (cents) as sent to the payment gateway."""
        return int(self.price * 100)

    @property
    def tool_slug(self) -> str:
        """Name in the form the GPT's own backend sends when verifying."""
        return slugify(self.name)


def slugify(name: str) -> str:
    """
    Lowercase, whitespace to dashes, drop anything but ASCII word chars and dashes.

    "Comentario Exegético" -> "comentario-exegtico"
    """
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return re.sub(r"[^\w-]", "", slug, flags=re.ASCII)


_PRICE = Decimal("9.99")

# Product catalog (GptModel rows use the same ids as primary keys)
GPT_PRODUCTS: dict[str, Product] = {
    "generador-sermones": Product(
        product_id="generador-sermones",
        name="Generador de Sermones",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68b0d8f025d081918f17cdc67fe2241b-generador-de-sermones",
        description=(
            "Prepara un bosquejo de sermón o Estudio Bíblico profundo y detallado a partir "
            "de un pasaje bíblico, tema, cita bíblica o palabra clave proporcionado."
        ),
        icon="fas fa-book-open",
    ),
    "manual-ceremonias": Product(
        product_id="manual-ceremonias",
        name="Manual de Ceremonias del Ministro",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68b46646ba548191afc0e0d7ca151cfd-manual-de-ceremonias-del-ministro",
        description=(
            "Guía práctica y completa para pastores, ministros y líderes de iglesia que desean "
            "conducir con excelencia, reverencia y claridad las celebraciones y servicios "
            "especiales de la vida cristiana."
        ),
        icon="fas fa-hands-praying",
    ),
    "mensajes-expositivos": Product(
        product_id="mensajes-expositivos",
        name="Mensajes Expositivos",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68b3bd5d57088191940ce1e37623c6d5-mensajes-expositivos",
        description=(
            "Predicación y enseñanza bíblica centrada en explicar de manera clara y fiel el "
            "sentido original de un pasaje de la Escritura, aplicándolo a la vida del oyente."
        ),
        icon="fas fa-cross",
    ),
    "comentario-exegetico": Product(
        product_id="comentario-exegetico",
        name="Comentario Exegético",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68b99cbbad508191954ffe0d3cbf3cc9-comentario-exegetico",
        description="Análisis profundo y académico de textos bíblicos con rigor teológico",
        icon="fas fa-book",
    ),
    "epistolas-pablo": Product(
        product_id="epistolas-pablo",
        name="Las Epistolas del Apostol Pablo",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68bcdcb9cd5081918d2577d165863496-las-epistolas-del-apostol-pablo",
        description=(
            "Estudio exhaustivo de las 13 cartas paulinas, desde Romanos hasta Filemón, con "
            "verdades doctrinales, contexto histórico y aplicaciones pastorales."
        ),
        icon="fas fa-scroll",
    ),
    "apocalipsis": Product(
        product_id="apocalipsis",
        name="Estudio El Libro de Apocalipsis",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68bf7f2ab4748191849d6f2402986de2-estudio-el-libro-de-apocalipsis",
        description=(
            "Explora las visiones de Juan, el simbolismo apocalíptico y las promesas de "
            "esperanza para la iglesia, con aplicación práctica para el cristiano moderno."
        ),
        icon="fas fa-eye",
    ),
    "cantar-cantares": Product(
        product_id="cantar-cantares",
        name="Estudio de Cantar de los Cantares",
        price=_PRICE,
        gpt_url="https://chatgpt.com/g/g-68bf83e2555481919630825ea98365e8-estudio-de-cantar-de-los-cantares",
        description=(
            "El amor divino a través del libro más poético de la Biblia: amor conyugal, "
            "relación Cristo-Iglesia y búsqueda espiritual del alma."
        ),
        icon="fas fa-heart",
    ),
    "capacitacion-biblica": Product(
        product_id="capacitacion-biblica",
        name="Capacitacion Bíblica para Servidores de Ministerio",
        price=_PRICE,
        # No public GPT link published yet; points at the GPT store
        gpt_url="https://chatgpt.com/gpts",
        description=(
            "Formación integral para servidores y líderes de ministerio cristiano con "
            "capacitación bíblica estructurada y herramientas prácticas de liderazgo."
        ),
        icon="fas fa-graduation-cap",
    ),
    "diccionario-biblico": Product(
        product_id="diccionario-biblico",
        name="Diccionario Bíblico",
        price=_PRICE,
        gpt_url="https://chatgpt.com/gpts",
        description=(
            "Términos, personajes y conceptos bíblicos con definiciones detalladas, contexto "
            "histórico y cultural, referencias cruzadas y etimología."
        ),
        icon="fas fa-book-open",
    ),
}


def resolve(product_id: str) -> Product:
    """
    Get product configuration by ID.

    Raises:
        ProductNotFoundError: If product ID not found
    """
    product = GPT_PRODUCTS.get(product_id)
    if not product:
        raise ProductNotFoundError(product_id)
    return product


def resolve_tool(identifier: str) -> Product:
    """
    Resolve a product id or a slugified GPT display name.

    The GPT's own backend identifies itself by its display name, so both
    "generador-sermones" and "generador-de-sermones" resolve to the same product.

    Raises:
        ProductNotFoundError: If nothing in the catalog matches
    """
    if identifier in GPT_PRODUCTS:
        return GPT_PRODUCTS[identifier]
    slug = slugify(identifier)
    for product in GPT_PRODUCTS.values():
        if product.tool_slug == slug or product.product_id == slug:
            return product
    raise ProductNotFoundError(identifier)


def list_products() -> list[Product]:
    """All products in display order."""
    return list(GPT_PRODUCTS.values())
