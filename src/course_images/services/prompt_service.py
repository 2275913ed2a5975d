"""
封面/模块配图 Prompt 构建

同一课程每次得到相同的 hash，不同课程的 hash 和分类不同，
用来拉开不同课程封面之间的视觉差异。
"""
from dataclasses import dataclass
from typing import Optional

from course_images.models.course import Course, CourseModule


@dataclass(frozen=True)
class CategoryRule:
    name: str
    keywords: tuple[str, ...]
    priority: int
    visual_style: str


# 按优先级排列，得分相同时靠前的胜出
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        name="cybersecurity",
        keywords=(
            "cibersegurança", "cybersecurity", "security", "hacking", "blue team",
            "red team", "penetration", "firewall", "malware", "vulnerability",
        ),
        priority=10,
        visual_style=(
            "dark tactical palette with neon cyan accents, network nodes, padlocks, "
            "circuit traces and flowing data streams"
        ),
    ),
    CategoryRule(
        name="programming",
        keywords=(
            "programação", "programming", "código", "code", "desenvolvimento",
            "development", "software", "javascript", "python", "java", "react", "node",
        ),
        priority=9,
        visual_style=(
            "clean developer workspace aesthetic, abstract code blocks, terminal glow, "
            "geometric syntax shapes in cool blue and violet"
        ),
    ),
    CategoryRule(
        name="data_science",
        keywords=(
            "dados", "data", "analytics", "machine learning", "ia",
            "artificial intelligence", "statistics", "big data", "analysis",
        ),
        priority=8,
        visual_style=(
            "luminous charts and scatter plots, neural network mesh, "
            "gradient teal to magenta, depth of field"
        ),
    ),
    CategoryRule(
        name="design",
        keywords=(
            "design", "ui", "ux", "interface", "visual", "graphics",
            "photoshop", "figma", "creative",
        ),
        priority=7,
        visual_style=(
            "bold colour blocking, layered paper cut shapes, soft shadows, "
            "playful composition with grid guides"
        ),
    ),
    CategoryRule(
        name="business",
        keywords=(
            "negócios", "business", "marketing", "vendas", "sales", "gestão",
            "management", "empreendedorismo", "entrepreneurship",
        ),
        priority=6,
        visual_style=(
            "modern corporate illustration, rising growth arrows, "
            "warm gold and navy palette, confident lighting"
        ),
    ),
)

GENERAL_VISUAL_STYLE = (
    "modern educational illustration, vibrant but balanced colours, "
    "clean shapes and soft lighting"
)

ENGINE_SUFFIXES = {
    "flux": (
        "Style: Modern, clean, educational design with vibrant colors. "
        "High quality, professional layout suitable for an online learning platform. "
        "Aspect ratio 16:9, no text overlay."
    ),
    "recraft": (
        "Design a modern educational course thumbnail with relevant imagery. "
        "Use a professional color scheme with good contrast. "
        "Format: 1920x1080 pixels, suitable for web display, no text."
    ),
    "proteus": (
        "Cinematic, highly detailed digital artwork, sharp focus, "
        "16:9 composition, no text, no logos."
    ),
}


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def generate_course_hash(course_id: str, title: str, description: Optional[str] = "") -> str:
    """
    课程指纹

    对 "{id}-{title}-{description}" 做 31 乘子的 32 位字符串哈希
    （按 UTF-16 码元计算），取绝对值后输出小写十六进制。
    """
    content = f"{course_id}-{title}-{description or ''}"
    data = content.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + code_unit)
    return format(abs(h), "x")


def detect_course_category(title: str, description: Optional[str] = "") -> str:
    """关键词命中数 × 优先级，取最高分分类，无命中返回 general"""
    text = f"{title} {description or ''}".lower()

    best_match = "general"
    highest_score = 0
    for rule in CATEGORY_RULES:
        matches = sum(1 for keyword in rule.keywords if keyword in text)
        score = matches * rule.priority
        if score > highest_score:
            highest_score = score
            best_match = rule.name
    return best_match


def visual_style_for(category: str) -> str:
    for rule in CATEGORY_RULES:
        if rule.name == category:
            return rule.visual_style
    return GENERAL_VISUAL_STYLE


@dataclass(frozen=True)
class BuiltPrompt:
    """构建好的 Prompt 以及写入任务 input 的元数据"""

    prompt: str
    course_hash: str
    category: str


def build_cover_prompt(course: Course, engine: str) -> BuiltPrompt:
    """课程封面 Prompt"""
    course_hash = generate_course_hash(course.id, course.title, course.description)
    category = detect_course_category(course.title, course.description)

    parts = [f'Create a professional course cover image for "{course.title}".']
    if course.description:
        parts.append(f"Course description: {course.description.strip()[:500]}.")
    parts.append(f"Visual direction: {visual_style_for(category)}.")
    parts.append(
        f"Unique composition seed {course_hash}: make the layout and colour "
        "balance distinct from other course covers."
    )
    parts.append(ENGINE_SUFFIXES.get(engine, ENGINE_SUFFIXES["flux"]))

    return BuiltPrompt(prompt=" ".join(parts), course_hash=course_hash, category=category)


def build_module_prompt(module: CourseModule, course: Course, engine: str) -> BuiltPrompt:
    """模块配图 Prompt，风格沿用所属课程的分类"""
    course_hash = generate_course_hash(module.id, module.title, course.title)
    category = detect_course_category(course.title, course.description)

    parts = [
        f'Realistic illustration for the chapter "{module.title}" '
        f'of the course "{course.title}".',
        f"Visual direction: {visual_style_for(category)}.",
        f"Unique composition seed {course_hash}.",
        ENGINE_SUFFIXES.get(engine, ENGINE_SUFFIXES["flux"]),
    ]
    return BuiltPrompt(prompt=" ".join(parts), course_hash=course_hash, category=category)
