"""Initialize content generators in the GeneratorRegistry."""

from studyjobs.v1.core.registries import generator_registry
from studyjobs.v1.gen.basic_rules import BasicRulesGenerator


def init_generator_registry():
    """Register all content generators with the GeneratorRegistry."""
    if "basic_rules" not in generator_registry:
        generator_registry.register("basic_rules", BasicRulesGenerator())
