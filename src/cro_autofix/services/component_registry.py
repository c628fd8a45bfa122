"""Selector-to-component resolution.

Interaction events name DOM selectors; fixes need source files.  The
registry is an ordered table from selectors to the storefront component
that renders them, most specific entries first.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from cro_autofix.domain.values import ComponentMapping

_ID_PATTERN = re.compile(r"#([a-z0-9_-]+)", re.IGNORECASE)
_CLASS_PATTERN = re.compile(r"\.([a-z0-9_-]+)", re.IGNORECASE)

_GRID = "components/store/ProductGrid.tsx"
_HERO = "components/store/Hero.tsx"

DEFAULT_COMPONENTS: tuple[ComponentMapping, ...] = (
    ComponentMapping("[data-product-id] img", _GRID, "ProductGrid", ("data-product-id",)),
    ComponentMapping(
        "[data-add-to-cart]", _GRID, "ProductGrid",
        ("data-add-to-cart", "data-cta", "data-product-id"),
    ),
    ComponentMapping("[data-product-id]", _GRID, "ProductGrid", ("data-product-id",)),
    ComponentMapping("#products", _GRID, "ProductGrid", ("data-product-id", "data-add-to-cart")),
    ComponentMapping(".hero-cta", _HERO, "Hero", ("data-cta",)),
    ComponentMapping("#hero [data-cta]", _HERO, "Hero", ("data-cta",)),
    ComponentMapping("#hero", _HERO, "Hero", ("data-cta",)),
    ComponentMapping("header nav", "components/store/Header.tsx", "Header"),
    ComponentMapping("header", "components/store/Header.tsx", "Header"),
    ComponentMapping("[data-cart]", "components/store/CartDrawer.tsx", "CartDrawer", ("data-cart",)),
    ComponentMapping(
        "[data-checkout]", "components/store/CheckoutForm.tsx", "CheckoutForm",
        ("data-checkout", "data-address"),
    ),
    ComponentMapping("#testimonials", "components/store/Testimonials.tsx", "Testimonials", ("data-section",)),
    ComponentMapping("#footer", "components/store/Footer.tsx", "Footer", ("data-section",)),
    ComponentMapping("footer", "components/store/Footer.tsx", "Footer"),
)

# (keywords, component name) tried in order against the element's text
_TEXT_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("add to cart", "$"), "ProductGrid"),
    (("shop", "browse"), "Hero"),
    (("cart", "checkout"), "CartDrawer"),
)


class ComponentRegistry:
    """Ordered selector table with fuzzy resolution.

    Parameters
    ----------
    mappings:
        Entries in priority order; defaults to the storefront components.
    """

    def __init__(self, mappings: Iterable[ComponentMapping] = DEFAULT_COMPONENTS) -> None:
        self._mappings: tuple[ComponentMapping, ...] = tuple(mappings)

    @property
    def mappings(self) -> Sequence[ComponentMapping]:
        return self._mappings

    def register(self, mapping: ComponentMapping, *, first: bool = True) -> None:
        """Add *mapping*, ahead of existing entries unless ``first=False``."""
        if first:
            self._mappings = (mapping, *self._mappings)
        else:
            self._mappings = (*self._mappings, mapping)

    def resolve(self, selector: str, element_text: str | None = None) -> ComponentMapping | None:
        """Return the component rendering *selector*, or ``None``.

        Tried in order: registered selector contained in *selector*, a
        registered data attribute mentioned in it, a shared ``#id``, a shared
        ``.class``, then keywords in *element_text*.
        """
        normalized = selector.lower().strip()
        if normalized:
            for mapping in self._mappings:
                if mapping.selector.lower() in normalized:
                    return mapping

            for mapping in self._mappings:
                if any(attr.lower() in normalized for attr in mapping.data_attributes):
                    return mapping

            for pattern, marker in ((_ID_PATTERN, "#"), (_CLASS_PATTERN, ".")):
                found = pattern.search(normalized)
                if found:
                    token = f"{marker}{found.group(1)}"
                    for mapping in self._mappings:
                        if token in mapping.selector:
                            return mapping

        if element_text:
            text = element_text.lower()
            for keywords, name in _TEXT_HINTS:
                if any(k in text for k in keywords):
                    return self.by_name(name)
        return None

    def by_name(self, component_name: str) -> ComponentMapping | None:
        for mapping in self._mappings:
            if mapping.component_name == component_name:
                return mapping
        return None
