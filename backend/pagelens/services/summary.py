import json

from pagelens.models import ParsedPage, StructuralAnalysis


def build_ir(page: ParsedPage, structural: StructuralAnalysis | None = None) -> dict:
    """Flatten a (possibly reduced) page into the IR payload.

    Field names are consumed by the interpretation prompt, keep them stable.
    ``cssValueDictionary`` is only present when compression produced one.
    """
    ir = {
        "tree": [node.to_dict() for node in page.tree],
        "totalNodes": page.total_nodes,
        "navigation": page.navigation,
        "forms": page.forms,
        "images": page.images,
        "colors": page.colors,
        "fonts": page.fonts,
        "ctas": page.ctas,
        "footer": page.footer,
        "socialLinks": page.social_links,
        "embeds": page.embeds,
        "metadata": page.metadata,
        "language": page.language,
        "cssInfo": page.css_info,
    }
    if page.css_value_dictionary:
        ir["cssValueDictionary"] = page.css_value_dictionary
    ir["structural"] = structural.to_dict() if structural is not None else None
    return ir


def serialize_ir(ir: dict) -> str:
    return json.dumps(ir, separators=(",", ":"), ensure_ascii=False)
