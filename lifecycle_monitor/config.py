import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


POLL_INTERVAL_MS = 50
STABILITY_WINDOW_MS = 500
EMPTY_RESOLUTION_MS = 8_000
BATCH_LOAD_TIMEOUT_MS = 20_000
WARMUP_TIMEOUT_MS = 180_000
WARM_RETURN_WAIT_MS = 3_000
WARM_GRACE_SNAPSHOTS = 10
LEAVE_SETTLE_MS = 500
MAX_TRACKED_WIDGETS = 30
BATCH_SIZE = 24
MIN_CONTENT_TEXT_LENGTH = 10

NAV_WIDGET_TIMEOUT_MS = 15_000
APP_LOAD_TIMEOUT_MS = 15_000
URL_CHANGE_TIMEOUT_MS = 5_000
RAPID_CLICK_GAP_MS = 200
SLOW_NAVIGATION_MS = 3_000
WARM_NAV_THRESHOLD_MS = 3_000

DEFAULT_VIEWPORT = {"width": 1440, "height": 900}
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

MANIFEST_PATH_TEMPLATE = "/__compliance/all-cards?batch={batch}&size={size}"
MANIFEST_GLOBAL = "__COMPLIANCE_MANIFEST__"
STREAM_URL_PATTERN = r"/api/mcp/([^/]+)/stream"

DEFAULT_DASHBOARDS = [
    {"id": "main", "name": "Dashboard", "route": "/"},
    {"id": "clusters", "name": "Clusters", "route": "/clusters"},
    {"id": "compute", "name": "Compute", "route": "/compute"},
    {"id": "security", "name": "Security", "route": "/security"},
    {"id": "gitops", "name": "GitOps", "route": "/gitops"},
    {"id": "pods", "name": "Pods", "route": "/pods"},
    {"id": "deployments", "name": "Deployments", "route": "/deployments"},
    {"id": "services", "name": "Services", "route": "/services"},
    {"id": "events", "name": "Events", "route": "/events"},
    {"id": "storage", "name": "Storage", "route": "/storage"},
    {"id": "network", "name": "Network", "route": "/network"},
    {"id": "nodes", "name": "Nodes", "route": "/nodes"},
    {"id": "workloads", "name": "Workloads", "route": "/workloads"},
    {"id": "gpu", "name": "GPU Reservations", "route": "/gpu-reservations"},
    {"id": "alerts", "name": "Alerts", "route": "/alerts"},
    {"id": "helm", "name": "Helm", "route": "/helm"},
    {"id": "operators", "name": "Operators", "route": "/operators"},
    {"id": "compliance", "name": "Compliance", "route": "/compliance"},
    {"id": "cost", "name": "Cost", "route": "/cost"},
    {"id": "ai-ml", "name": "AI/ML", "route": "/ai-ml"},
    {"id": "ci-cd", "name": "CI/CD", "route": "/ci-cd"},
    {"id": "logs", "name": "Logs", "route": "/logs"},
    {"id": "deploy", "name": "Deploy", "route": "/deploy"},
    {"id": "ai-agents", "name": "AI Agents", "route": "/ai-agents"},
    {"id": "data-compliance", "name": "Data Compliance", "route": "/data-compliance"},
    {"id": "arcade", "name": "Arcade", "route": "/arcade"},
]

DEFAULT_STORAGE_SEED = {
    "token": "test-token",
    "kc-demo-mode": "false",
    "demo-user-onboarded": "true",
    "kubestellar-console-tour-completed": "true",
    "kc-sqlite-migrated": "2",
}

DEFAULT_THRESHOLDS = {
    "exact": {"a": 1.0},
    "minimum": {"c": 0.95, "d": 0.95, "f": 0.95},
    "max_fail_count": 2,
}


@dataclass
class SurfaceMarkers:
    """Externally observable markers a widget exposes on the rendered page."""

    widget_id_attr: str = "data-card-id"
    widget_type_attr: str = "data-card-type"
    loading_attr: str = "data-loading"
    effective_loading_attr: str = "data-effective-loading"
    skeleton_selector: str = '[data-card-skeleton="true"]'
    demo_selector: str = '[data-testid="demo-badge"]'
    contamination_class: str = "border-yellow-500"
    spinner_selector: str = "svg.animate-spin"
    visual_selector: str = 'canvas,svg,iframe,table,img,video,pre,code,[role="img"]'
    nav_link_selector: str = '[data-testid="sidebar-primary-nav"] a[href="{route}"]'
    app_ready_selector: str = '[data-testid="sidebar"]'

    def to_payload(self) -> Dict[str, str]:
        return {
            "idAttr": self.widget_id_attr,
            "typeAttr": self.widget_type_attr,
            "loadingAttr": self.loading_attr,
            "effectiveLoadingAttr": self.effective_loading_attr,
            "skeleton": self.skeleton_selector,
            "demo": self.demo_selector,
            "contaminationClass": self.contamination_class,
            "spinner": self.spinner_selector,
            "visual": self.visual_selector,
        }


@dataclass
class CachePolicy:
    clear_key_contains: List[str] = field(
        default_factory=lambda: ["dashboard-cards", "kubestellar-stack-cache"]
    )
    clear_key_prefixes: List[str] = field(default_factory=lambda: ["cache:"])
    clear_databases: List[str] = field(default_factory=lambda: ["kc_cache", "kubestellar-cache"])
    probe_key_contains: List[str] = field(default_factory=lambda: ["cache", "kubestellar-"])
    probe_key_prefixes: List[str] = field(default_factory=lambda: ["kc-", "cache:"])
    probe_database: str = "kc_cache"
    storage_seed: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STORAGE_SEED))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "clearContains": self.clear_key_contains,
            "clearPrefixes": self.clear_key_prefixes,
            "clearDatabases": self.clear_databases,
            "probeContains": self.probe_key_contains,
            "probePrefixes": self.probe_key_prefixes,
            "probeDatabase": self.probe_database,
            "seed": self.storage_seed,
        }


@dataclass
class MonitorConfig:
    base_url: str
    output_dir: Path = Path("./compliance-output")
    batch_size: int = BATCH_SIZE
    poll_interval_ms: int = POLL_INTERVAL_MS
    batch_timeout_ms: int = BATCH_LOAD_TIMEOUT_MS
    warmup_timeout_ms: int = WARMUP_TIMEOUT_MS
    warm_wait_ms: int = WARM_RETURN_WAIT_MS
    warm_grace_snapshots: int = WARM_GRACE_SNAPSHOTS
    nav_timeout_ms: int = NAV_WIDGET_TIMEOUT_MS
    max_widgets: int = MAX_TRACKED_WIDGETS
    manifest_path_template: str = MANIFEST_PATH_TEMPLATE
    markers: SurfaceMarkers = field(default_factory=SurfaceMarkers)
    cache: CachePolicy = field(default_factory=CachePolicy)
    dashboards: List[Dict[str, str]] = field(default_factory=lambda: list(DEFAULT_DASHBOARDS))
    thresholds: Dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_THRESHOLDS))
    headless: bool = True

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.output_dir = Path(self.output_dir)
        if self.batch_size < 1:
            raise ValueError(f"batch size must be positive, got {self.batch_size}")
        if self.poll_interval_ms < 1:
            raise ValueError(f"poll interval must be positive, got {self.poll_interval_ms}")

    def manifest_path(self, batch_index: int) -> str:
        # the manifest page numbers batches from 1
        return self.manifest_path_template.format(batch=batch_index + 1, size=self.batch_size)

    @property
    def warm_grace_ms(self) -> int:
        return self.warm_grace_snapshots * self.poll_interval_ms


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def parse_dashboards(raw: Optional[str]) -> List[Dict[str, str]]:
    if not raw:
        return list(DEFAULT_DASHBOARDS)
    path = Path(raw)
    if not path.exists():
        raise FileNotFoundError(f"Dashboard list not found: {path}")
    data = read_json(path)
    dashboards = []
    for item in data if isinstance(data, list) else []:
        if not isinstance(item, dict) or not item.get("route"):
            continue
        route = item["route"]
        dashboards.append({
            "id": item.get("id") or route.strip("/") or "main",
            "name": item.get("name") or route,
            "route": route,
        })
    return dashboards or list(DEFAULT_DASHBOARDS)


def parse_storage_seed(raw: Optional[str]) -> Dict[str, str]:
    if not raw:
        return dict(DEFAULT_STORAGE_SEED)
    path = Path(raw)
    if not path.exists():
        raise FileNotFoundError(f"Storage seed not found: {path}")
    data = read_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"Storage seed must be a JSON object: {path}")
    # localStorage only holds strings
    return {
        str(k): v if isinstance(v, str) else json.dumps(v)
        for k, v in data.items()
    }


def parse_scenarios(raw: Optional[str], available: List[str]) -> List[str]:
    if not raw:
        return list(available)
    wanted = [s.strip() for s in raw.split(",") if s.strip()]
    unknown = [s for s in wanted if s not in available]
    if unknown:
        raise ValueError(f"Unknown scenario(s): {', '.join(unknown)}; choose from {', '.join(available)}")
    return wanted
