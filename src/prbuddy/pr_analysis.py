from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from prbuddy.models import PullRequestDetails


ComplexityLevel = Literal["simple", "moderate", "complex", "very-complex"]
ReviewType = Literal["staff-engineer", "security", "performance", "architecture", "junior-dev"]

REVIEW_TYPES: tuple[ReviewType, ...] = (
    "staff-engineer",
    "security",
    "performance",
    "architecture",
    "junior-dev",
)
_HIGH_COMPLEXITY_LEVELS: frozenset[ComplexityLevel] = frozenset({"complex", "very-complex"})
_REVIEW_TIMES: dict[ComplexityLevel, str] = {
    "simple": "15-30 minutes",
    "moderate": "30-60 minutes",
    "complex": "1-2 hours",
    "very-complex": "2+ hours (consider scheduling dedicated review session)",
}


@dataclass(frozen=True)
class ComplexityAnalysis:
    score: int
    level: ComplexityLevel
    changed_files: int
    lines_added: int
    lines_deleted: int
    lines_changed: int
    deletion_ratio: float
    description: str
    estimated_review_time: str
    suggestions: tuple[str, ...]


def analyze_complexity(pr: PullRequestDetails) -> ComplexityAnalysis:
    """Score a pull request from 0 to 100 by size and shape of its diff.

    Files contribute up to 30 points, changed lines up to 40 and the
    deletion/addition ratio up to 30. Balanced diffs score lowest on ratio.
    """
    files = pr.changed_files
    total = pr.additions + pr.deletions
    ratio = pr.deletions / pr.additions if pr.additions > 0 else 0.0

    score = _file_factor(files) + _line_factor(total) + _ratio_factor(ratio)
    level = _level_for(score)

    suggestions: list[str] = []
    if files > 15:
        suggestions.append("Consider breaking this PR into smaller, focused changes")
    if total > 500:
        suggestions.append("Large PR - ensure comprehensive testing and multiple reviewers")
    if ratio > 5:
        suggestions.append("Mostly deletions - ensure no functionality is lost")
    elif ratio < 0.2:
        suggestions.append("Mostly additions - verify no duplicate functionality")
    if pr.is_draft:
        suggestions.append("Draft PR - mark as ready for review when complete")

    return ComplexityAnalysis(
        score=score,
        level=level,
        changed_files=files,
        lines_added=pr.additions,
        lines_deleted=pr.deletions,
        lines_changed=total,
        deletion_ratio=ratio,
        description=_describe(level, total=total, files=files),
        estimated_review_time=_REVIEW_TIMES[level],
        suggestions=tuple(suggestions),
    )


def build_review_prompt(
    pr: PullRequestDetails,
    review_type: str = "staff-engineer",
    focus_areas: tuple[str, ...] = (),
) -> str:
    if review_type not in REVIEW_TYPES:
        raise ValueError(
            f"Unknown review type: {review_type}. Expected one of: {', '.join(REVIEW_TYPES)}"
        )
    complexity = analyze_complexity(pr)
    header = f"""
**{pr.title}** by @{pr.author}
**Complexity:** {complexity.level} ({complexity.score}/100, {complexity.estimated_review_time})
""".strip()
    body = _REVIEW_BODIES[review_type]
    sections = [f"# {_REVIEW_TITLES[review_type]}: PR #{pr.number}", header, body]

    if focus_areas:
        sections.append(
            "## Requested Focus Areas\n" + "\n".join(f"- {area}" for area in focus_areas)
        )
    if complexity.level in _HIGH_COMPLEXITY_LEVELS:
        alert = [
            "## High Complexity Alert",
            f"This PR scores {complexity.score}/100. Pay special attention to:",
        ]
        alert.extend(f"- {suggestion}" for suggestion in complexity.suggestions)
        if not complexity.suggestions:
            alert.append(f"- {complexity.description}")
        sections.append("\n".join(alert))
    return "\n\n".join(sections)


def build_code_checklist(
    pr: PullRequestDetails,
    *,
    include_security: bool = True,
    include_performance: bool = True,
) -> list[str]:
    checklist = list(_BASE_CHECKLIST)
    if include_security:
        checklist.extend(_SECURITY_CHECKLIST)
    if include_performance:
        checklist.extend(_PERFORMANCE_CHECKLIST)
    if analyze_complexity(pr).level in _HIGH_COMPLEXITY_LEVELS:
        checklist.extend(_HIGH_RISK_CHECKLIST)
    return checklist


def _file_factor(files: int) -> int:
    if files <= 3:
        return 5
    if files <= 10:
        return 15
    if files <= 20:
        return 25
    return 30


def _line_factor(total: int) -> int:
    if total <= 50:
        return 5
    if total <= 200:
        return 15
    if total <= 500:
        return 25
    if total <= 1000:
        return 35
    return 40


def _ratio_factor(ratio: float) -> int:
    if 0.3 <= ratio <= 3:
        return 10
    if ratio < 0.1 or ratio > 10:
        return 30
    return 20


def _level_for(score: int) -> ComplexityLevel:
    if score <= 25:
        return "simple"
    if score <= 50:
        return "moderate"
    if score <= 75:
        return "complex"
    return "very-complex"


def _describe(level: ComplexityLevel, *, total: int, files: int) -> str:
    span = f"{total} lines across {files} files"
    if level == "simple":
        return f"Simple complexity change with {span}"
    if level == "moderate":
        return f"Moderate complexity change with {span}"
    if level == "complex":
        return f"Complex change with {span} - requires careful review"
    return f"Very complex change with {span} - consider breaking into smaller PRs"


_REVIEW_TITLES: dict[str, str] = {
    "staff-engineer": "Staff Engineer Review",
    "security": "Security Review",
    "performance": "Performance Review",
    "architecture": "Architecture Review",
    "junior-dev": "Learning-Focused Review",
}

_REVIEW_BODIES: dict[str, str] = {
    "staff-engineer": """
## Key Questions
- Does this align with our architecture vision?
- Will this scale and be maintainable?
- Are there any hidden risks or technical debt?
- Should we ship this now or iterate further?

## Focus Areas
- **Architecture** - System design and patterns
- **Performance** - Scalability and efficiency
- **Security** - Vulnerabilities and compliance
- **Maintainability** - Code quality and documentation
""".strip(),
    "security": """
## Security Checklist
- **Input Validation** - All user inputs validated and sanitized?
- **Authentication** - Proper auth/authz checks in place?
- **Data Protection** - Sensitive data encrypted and secured?
- **Dependencies** - No known vulnerabilities in libraries?
- **Secrets** - No hardcoded credentials or API keys?

## Red Flags to Watch For
- Direct database queries without parameterization
- File uploads without validation
- Admin endpoints without proper authorization
- Logging of sensitive information
""".strip(),
    "performance": """
## Performance Checklist
- **Database** - Queries optimized, indexes in place?
- **Memory** - No obvious leaks or excessive usage?
- **Network** - Minimal API calls, caching used?
- **Algorithms** - Time/space complexity reasonable?
- **Scalability** - Will this handle increased load?

## Watch Out For
- N+1 query problems
- Synchronous operations that should be async
- Large objects in memory
- Missing pagination on lists
""".strip(),
    "architecture": """
## Architecture Questions
- **Design Patterns** - Are appropriate patterns used?
- **Separation of Concerns** - Is responsibility clearly divided?
- **Dependencies** - Are dependencies managed well?
- **Interfaces** - Are APIs clean and well-defined?
- **Future-Proofing** - Will this be flexible for future needs?

## Key Considerations
- Does this fit our existing architecture?
- Are we introducing unnecessary complexity?
- Is this the right abstraction level?
- Will other teams understand this design?
""".strip(),
    "junior-dev": """
## Code Quality Basics
- **Readability** - Is the code easy to understand?
- **Naming** - Are variables and functions well-named?
- **Structure** - Is the code well-organized?
- **Testing** - Are there tests for the new functionality?
- **Documentation** - Is complex logic explained?

## Learning Opportunities
- What patterns or techniques are used here?
- How could this be improved or simplified?
- What edge cases might we be missing?
- Are there any potential bugs or issues?
""".strip(),
}

_BASE_CHECKLIST: tuple[str, ...] = (
    "Code follows team coding standards",
    "Variable and function names are descriptive",
    "Code is properly commented where necessary",
    "No commented-out code left behind",
    "No debug statements left in production code",
    "Logic is clear and easy to follow",
    "Edge cases are handled appropriately",
    "Error handling is comprehensive",
    "Input validation is present where needed",
    "Function complexity is reasonable",
    "Unit tests added for new functionality",
    "Existing tests still pass",
    "Test coverage is adequate",
    "Integration tests added if applicable",
    "README updated if needed",
    "API documentation updated",
    "Breaking changes documented",
    "Migration guide provided if needed",
)
_SECURITY_CHECKLIST: tuple[str, ...] = (
    "[security] No hardcoded secrets or credentials",
    "[security] Input sanitization implemented",
    "[security] Authentication/authorization checked",
    "[security] SQL injection prevention verified",
    "[security] XSS prevention measures in place",
    "[security] HTTPS used for external calls",
    "[security] Sensitive data properly encrypted",
)
_PERFORMANCE_CHECKLIST: tuple[str, ...] = (
    "[performance] No obvious performance bottlenecks",
    "[performance] Database queries are optimized",
    "[performance] Memory usage is reasonable",
    "[performance] Large loops/iterations optimized",
    "[performance] Caching implemented where appropriate",
    "[performance] Resource cleanup implemented",
)
_HIGH_RISK_CHECKLIST: tuple[str, ...] = (
    "[high-risk] Multiple reviewers assigned",
    "[high-risk] Deployment plan discussed",
    "[high-risk] Rollback strategy defined",
    "[high-risk] Monitoring/alerting updated",
)
