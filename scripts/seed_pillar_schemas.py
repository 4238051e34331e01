#!/usr/bin/env python3
"""
Seed the pillar schemas used by normalization.

Existing rows are updated in place, so the script can be re-run after the
field lists below change.
"""

import asyncio
import logging

from sqlalchemy import select

from catalog_pipeline.db.models import Base, PillarSchema
from catalog_pipeline.db.session import AsyncSessionLocal, engine
from catalog_pipeline.logging_config import setup_logging
from catalog_pipeline.normalize.schema import PillarSchemaSpec

logger = logging.getLogger(__name__)


def _text(label: str, example: str) -> dict:
    return {"type": "text", "label": label, "example": example}


def _number(label: str, example) -> dict:
    return {"type": "number", "label": label, "example": example}


def _choice(label: str, options: list[str]) -> dict:
    return {"type": "text", "label": label, "example": options[0], "options": options}


PILLAR_SCHEMAS = [
    PillarSchemaSpec.from_definitions(
        "fire_doors",
        "Fire Doors",
        {
            "fire_rating": _choice("Fire rating", ["FD30", "FD30S", "FD60", "FD60S", "FD90", "FD120"]),
            "leaf_material": _text("Leaf material", "Timber"),
            "leaf_thickness_mm": _number("Leaf thickness (mm)", 54),
            "max_leaf_size": _text("Maximum leaf size", "1200 x 2400mm"),
            "glass_type": _text("Glass type", "Borosilicate"),
            "smoke_seal_type": _text("Smoke seal type", "Fin type"),
            "intumescent_strip_type": _text("Intumescent strip type", "Graphite based"),
            "ironmongery_compatibility": _text("Ironmongery compatibility", "FD30/FD60 doorsets"),
            "certification_body": _text("Certification body", "Warringtonfire"),
            "test_standard": _text("Test standard", "BS EN 1634-1"),
        },
        ["fire_rating", "test_standard"],
    ),
    PillarSchemaSpec.from_definitions(
        "dampers",
        "Fire & Smoke Dampers",
        {
            "fire_rating": _text("Fire rating", "EI 60"),
            "damper_type": _choice("Damper type", ["Intumescent curtain", "Multi-blade", "Single blade"]),
            "blade_material": _text("Blade material", "Galvanised steel"),
            "actuator_type": _text("Actuator type", "Spring-return 24V"),
            "duct_size_range": _text("Duct size range", "100x100 to 1200x800mm"),
            "orientation": _text("Orientation", "Horizontal or vertical"),
            "reset_type": _choice("Reset type", ["Manual", "Automatic"]),
            "fusible_link_temp_c": _number("Fusible link temperature (C)", 72),
            "test_standard": _text("Test standard", "BS EN 15650"),
        },
        ["fire_rating", "damper_type"],
    ),
    PillarSchemaSpec.from_definitions(
        "fire_stopping",
        "Fire Stopping",
        {
            "fire_rating": _text("Fire rating", "120 minutes"),
            "penetration_type": _text("Penetration type", "Service penetration"),
            "service_type": _text("Service type", "Plastic pipework"),
            "pipe_material": _text("Pipe material", "uPVC, PP, PE, ABS"),
            "pipe_diameter_range_mm": _text("Pipe diameter range (mm)", "32-315"),
            "wall_floor_type": _text("Wall/floor type", "Masonry / concrete"),
            "annular_gap_mm": _text("Annular gap (mm)", "0-50"),
            "seal_depth_mm": _text("Seal depth (mm)", "100"),
            "movement_capability_mm": _number("Movement capability (mm)", 25),
            "installation_method": _text("Installation method", "Trowel applied"),
            "test_standard": _text("Test standard", "BS EN 1366-3"),
        },
        ["fire_rating", "penetration_type"],
    ),
    PillarSchemaSpec.from_definitions(
        "retro_fire_stopping",
        "Retro Fire Stopping",
        {
            "fire_rating": _text("Fire rating", "60 minutes"),
            "application_type": _text("Application type", "Curtain wall perimeter"),
            "substrate_compatibility": _text("Substrate compatibility", "Concrete, masonry, steel"),
            "cavity_width_range_mm": _text("Cavity width range (mm)", "25-200"),
            "linear_gap_seal_type": _text("Linear gap seal type", "Intumescent mat"),
            "accessibility": _text("Accessibility", "From internal side only"),
            "installation_method": _text("Installation method", "Mechanical fix"),
            "test_standard": _text("Test standard", "BS EN 1366-4"),
        },
        ["fire_rating", "application_type"],
    ),
    PillarSchemaSpec.from_definitions(
        "auro_lume",
        "Photoluminescent Safety Signage",
        {
            "luminance_mcd_m2": _number("Luminance (mcd/m2)", 1700),
            "duration_minutes": _number("Glow duration (minutes)", 3000),
            "excitation_time_minutes": _number("Excitation time (minutes)", 15),
            "photoluminescent_class": _choice("Photoluminescent class", ["A", "B", "C", "D", "E", "F", "G"]),
            "material": _text("Material", "Rigid PVC"),
            "mounting_type": _text("Mounting type", "Wall mount"),
            "sign_type": _text("Sign type", "Escape route directional"),
            "bs_standard": _text("Standard", "BS 5499-4 / ISO 7010"),
        },
        ["sign_type", "photoluminescent_class"],
    ),
]


async def seed_pillar_schemas() -> None:
    """Insert or update every pillar schema."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        added = 0
        updated = 0
        for spec in PILLAR_SCHEMAS:
            result = await db.execute(select(PillarSchema).where(PillarSchema.pillar == spec.pillar))
            row = result.scalar_one_or_none()
            if row is None:
                db.add(
                    PillarSchema(
                        pillar=spec.pillar,
                        display_name=spec.display_name,
                        field_definitions=spec.field_definitions(),
                        required_fields=spec.required_fields,
                    )
                )
                added += 1
            else:
                row.display_name = spec.display_name
                row.field_definitions = spec.field_definitions()
                row.required_fields = spec.required_fields
                updated += 1
            logger.info(f"  {spec.pillar}: {len(spec.fields)} fields")

        await db.commit()

    logger.info(f"Pillar schemas seeded: {added} added, {updated} updated")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed_pillar_schemas())
