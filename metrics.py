from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
    "prompt_requests_total",
    "Total /prompt-stream requests",
    ["status"],
)
REQUEST_LATENCY = Histogram(
    "prompt_admission_seconds",
    "Time from request arrival until the stream opens or the request is rejected",
)
ADMISSIONS = Counter(
    "run_admissions_total",
    "Run admission decisions",
    ["outcome"],
)
TOOL_CALLS = Counter(
    "tool_calls_total",
    "Tool calls dispatched for assistant runs",
    ["tool", "status"],
)
FRAMES = Counter(
    "output_frames_total",
    "Frames written to client streams",
    ["type"],
)
