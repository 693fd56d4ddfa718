"""Versioned policy data for the sandbox classifiers.

Every regex the path, content, command and output guards consult lives here
so tests can enumerate "this string must trigger this rule" without going
through control flow. Bump ``PATTERN_VERSION`` whenever a list changes.
"""
from __future__ import annotations

import re

PATTERN_VERSION = "2024.11.1"

BLOCKED_MARKER = "BLOCKED:"
OUTPUT_BLOCKED_MARKER = "[OUTPUT BLOCKED: possible secret dump detected]"

# ---------------------------------------------------------------------------
# Sensitive files
# ---------------------------------------------------------------------------

SENSITIVE_FILES = frozenset(
    {
        ".env",
        ".env.local",
        ".env.production",
        ".env.development",
        ".env.staging",
        "credentials.json",
        "credentials.yaml",
        "secrets.json",
        "secrets.yaml",
        ".secrets",
        "service-account.json",
        "serviceaccountkey.json",
        ".npmrc",
        ".pypirc",
        "id_rsa",
        "id_ed25519",
        "id_ecdsa",
        "id_dsa",
        ".pem",
        ".key",
    }
)

SENSITIVE_PATH_PATTERNS = (
    re.compile(r"\.env(\.[a-z]+)?$", re.IGNORECASE),
    re.compile(r"credentials?\.(json|yaml|yml)$", re.IGNORECASE),
    re.compile(r"secrets?\.(json|yaml|yml)$", re.IGNORECASE),
    re.compile(r"service.?account.*\.json$", re.IGNORECASE),
    re.compile(r"private.?key", re.IGNORECASE),
    re.compile(r"id_(rsa|dsa|ecdsa|ed25519)$", re.IGNORECASE),
    re.compile(r"\.(pem|key|p12|pfx)$", re.IGNORECASE),
)

SENSITIVE_DIRECTORY_MARKERS = ("/.ssh/",)

SECRETS_MOUNT_PATHS = ("/run/secrets", "/var/run/secrets")
SECRETS_MOUNT_RE = re.compile(r"(?:/var)?/run/secrets\b")

# send_file refuses anything whose name merely mentions a credential.
SENSITIVE_SEND_PATTERNS = (
    re.compile(r"\.env", re.IGNORECASE),
    re.compile(r"credentials", re.IGNORECASE),
    re.compile(r"secrets", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"\.pem$", re.IGNORECASE),
    re.compile(r"id_rsa", re.IGNORECASE),
    re.compile(r"id_ed25519", re.IGNORECASE),
    re.compile(r"\.key$", re.IGNORECASE),
    re.compile(r"serviceaccount", re.IGNORECASE),
)

SECRET_SEARCH_RE = re.compile(r"password|secret|token|api.?key|credential|private.?key", re.IGNORECASE)

# Globs excluded from every text search, for ripgrep and the grep fallback.
SEARCH_EXCLUDE_GLOBS = (
    "*.env*",
    "*credential*",
    "*secret*",
    "*private*key*",
    "*service*account*",
    "*id_rsa*",
    "*id_dsa*",
    "*id_ecdsa*",
    "*id_ed25519*",
    ".npmrc",
    ".pypirc",
    "*.pem",
    "*.key",
    "*.p12",
    "*.pfx",
)
SEARCH_EXCLUDE_DIRS = ("node_modules", ".git", "dist", ".ssh")

# ---------------------------------------------------------------------------
# Dangerous file content
# ---------------------------------------------------------------------------

DANGEROUS_CODE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"os\.environ", re.IGNORECASE), "os.environ access"),
    (re.compile(r"os\.getenv", re.IGNORECASE), "os.getenv access"),
    (re.compile(r"from\s+os\s+import\s+environ", re.IGNORECASE), "environ import"),
    (re.compile(r"load_dotenv", re.IGNORECASE), "dotenv loading"),
    (re.compile(r"process\.env", re.IGNORECASE), "process.env access"),
    (re.compile(r"require\s*\(\s*['\"]dotenv['\"]\s*\)", re.IGNORECASE), "dotenv require"),
    (
        re.compile(r"\$\{?[A-Z_]*(KEY|TOKEN|SECRET|PASSWORD|CREDENTIAL)[A-Z_]*\}?", re.IGNORECASE),
        "secret variable reference",
    ),
    (re.compile(r"curl\s+.*(-d|--data|POST)", re.IGNORECASE), "curl POST request"),
    (re.compile(r"requests\.(post|put)", re.IGNORECASE), "Python HTTP POST"),
    (re.compile(r"fetch\s*\(.*method:\s*['\"]POST", re.IGNORECASE), "fetch POST"),
    (re.compile(r"socket\s*\(\s*\)\s*\.connect", re.IGNORECASE), "socket connect"),
    (re.compile(r"/dev/tcp/", re.IGNORECASE), "bash TCP redirect"),
    (re.compile(r"\bnc\s+.*-e", re.IGNORECASE), "netcat exec"),
    (re.compile(r"open\s*\(\s*['\"]/etc/", re.IGNORECASE), "reading /etc"),
    (re.compile(r"open\s*\(\s*['\"].*\.env['\"]", re.IGNORECASE), "reading .env file"),
    (re.compile(r"readFileSync\s*\(\s*['\"].*\.env", re.IGNORECASE), "reading .env file"),
)

# The exfiltration-server heuristic only fires when all three co-occur.
SERVER_CODE_RE = re.compile(
    r"(createServer\s*\(|http\.createServer|express\s*\(|fastify\s*\(|koa\s*\(|Flask\s*\(|FastAPI\s*\()",
    re.IGNORECASE,
)
FILE_READ_RE = re.compile(
    r"(readFileSync|readdirSync|createReadStream|fs\.readFile|fs\.readdir|open\s*\(|os\.listdir)",
    re.IGNORECASE,
)
USER_CONTROLLED_PATH_RE = re.compile(
    r"(searchParams\.get|req\.query|req\.url|request\.args|get\(\s*['\"](?:f|d|path|file|dir)['\"])",
    re.IGNORECASE,
)

# Broader set used when scanning scripts a command is about to run.
SERVER_IDIOM_RE = re.compile(
    r"(createServer\s*\(|\.listen\s*\(|express\s*\(|fastify\s*\(|koa\s*\(|Flask\s*\(|FastAPI\s*\("
    r"|HTTPServer|ThreadingHTTPServer|socketserver|serve_forever|http\.server|app\.run\s*\("
    r"|uvicorn\.run|web\.run_app|Bun\.serve|Deno\.serve|TCPServer)",
    re.IGNORECASE,
)
PARENT_TRAVERSAL_RE = re.compile(r"\.\.[/\\]|(['\"`])\.\.\1")

# ---------------------------------------------------------------------------
# Shell commands
# ---------------------------------------------------------------------------

# cd/pushd at the start of a command, after shell keywords and wrappers, or
# inside a quoted string handed to sh -c or eval.
CD_RE = re.compile(
    r"(?:^|[;&|\n({`'\"]|\$\()\s*"
    r"(?:(?:[A-Za-z_][A-Za-z0-9_]*=\S*|then|do|else|elif|if|while|until|!|time|command|builtin|exec|eval|nice|env|sudo)"
    r"(?:\s+-[\w-]+)*\s+)*"
    r"(?:cd|pushd)\b([^;&|\n)]*)"
)
CD_PARENT_RE = re.compile(r"\bcd\s+\.\.(?:[/\s;&|)]|$)")
# ".." as its own path segment; "a..b" ranges and "..." spreads are not paths.
COMMAND_TRAVERSAL_RE = re.compile(r"(?<![\w.])\.\.(?![\w.])")

# Absolute path-shaped tokens, including ones glued to "=" or ":" and spelled
# with doubled or backslash separators. Callers normalize before comparing.
PATH_TOKEN_RE = re.compile(r"(?<![\w.~/\\-])[/\\][^\s'\"`;|&<>(){}\[\],]*")

SERVER_COMMAND_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"\bpython[0-9.]*\s+(?:-\w+\s+)*-m\s+(?:http\.server|SimpleHTTPServer|CGIHTTPServer|http\b)"),
        "python built-in HTTP server",
    ),
    (re.compile(r"\bphp\s+(?:-\w+\s+)*-S\b"), "php built-in server"),
    (re.compile(r"\bruby\s+-run\b"), "ruby httpd"),
    (re.compile(r"\bbusybox\s+httpd\b"), "busybox httpd"),
    (re.compile(r"\bnpx\s+(?:-\w+\s+)*(?:serve|http-server|live-server|vite|webpack-dev-server)\b"), "npx dev server"),
    (re.compile(r"(?:^|[;&|]\s*)(?:http-server|live-server|webpack-dev-server)\b"), "dev server CLI"),
    (re.compile(r"\bflask\s+run\b"), "flask dev server"),
    (re.compile(r"(?:^|[;&|]\s*)(?:python[0-9.]*\s+-m\s+)?(?:uvicorn|gunicorn|hypercorn|daphne)\b"), "ASGI/WSGI server"),
    (re.compile(r"\bjupyter\s+(?:notebook|lab|server)\b"), "jupyter server"),
    (re.compile(r"\b(?:nc|ncat|netcat)\b[^|;&\n]*\s-\w*l"), "netcat listener"),
    (re.compile(r"\bsocat\b[^|;&\n]*(?:TCP|UDP)[46]?-LISTEN", re.IGNORECASE), "socat listener"),
)

INLINE_CODE_RE = re.compile(
    r"\b(?:node|nodejs|deno|bun)\s+(?:-[\w-]+\s+)*(?:-e|--eval|-p|--print)\b"
    r"|\bpython[0-9.]*\s+(?:-\w+\s+)*-c\b"
    r"|\b(?:ruby|perl)\s+(?:-\w+\s+)*-e\b"
    r"|\bphp\s+(?:-\w+\s+)*-r\b"
)

SCRIPT_INTERPRETERS = frozenset(
    {
        "node",
        "nodejs",
        "deno",
        "bun",
        "ts-node",
        "tsx",
        "python",
        "python3",
        "ruby",
        "perl",
        "php",
        "bash",
        "sh",
        "zsh",
        "dash",
    }
)
PYTHON_INTERPRETER_RE = re.compile(r"^python[0-9.]*$")
INTERPRETER_SUBCOMMANDS = frozenset({"run"})

BLOCKED_COMMAND_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;?\s*:"), "fork bomb"),
    (re.compile(r"\bmkfs(?:\.\w+)?\b"), "filesystem formatting"),
    (re.compile(r"\bdd\b[^|;&\n]*\bof=/dev/"), "raw device write"),
    (re.compile(r">\s*/dev/(?:sd|nvme|hd|vd|xvd)"), "raw device write"),
    (re.compile(r"(?:^|[;&|]\s*)(?:sudo\s+)?(?:shutdown|reboot|halt|poweroff)\b"), "host power control"),
    (re.compile(r"\binit\s+[06]\b"), "host power control"),
    (re.compile(r"/etc/(?:shadow|gshadow|sudoers)\b"), "reading system credentials"),
    (re.compile(r"(?:^|[;&|(`]\s*)printenv\b"), "environment dump"),
    (re.compile(r"(?:^|[;&|(`]\s*)env\s*(?:$|[;&|>)`])"), "environment dump"),
    (re.compile(r"(?:^|[;&|(`]\s*)(?:export|declare|typeset)\s+-p\b"), "environment dump"),
    (re.compile(r"(?:^|[;&|(`]\s*)set\s*(?:$|[;&|>)`])"), "environment dump"),
    (re.compile(r"\bcompgen\s+-[ev]\b"), "environment dump"),
    (re.compile(r"/proc/[^\s/]+/environ\b"), "process environment read"),
    (re.compile(r"\b(?:curl|wget)\b[^|\n]*\|\s*(?:sudo\s+)?(?:ba|z|da|k)?sh\b"), "remote script piped to shell"),
    (re.compile(r"/dev/(?:tcp|udp)/"), "reverse shell"),
    (re.compile(r"\b(?:nc|ncat|netcat)\b[^|;&\n]*\s-\w*[ec]\b"), "reverse shell"),
    (re.compile(r"\bsocat\b[^|;&\n]*\bexec:", re.IGNORECASE), "reverse shell"),
    (re.compile(r"\b(?:ba)?sh\s+-i\b"), "interactive shell"),
    (re.compile(r"docker\.sock"), "container runtime socket"),
    (re.compile(r"\bhistory\b[^|;&\n]*-c\b|\bunset\s+HISTFILE\b"), "history tampering"),
)

DANGEROUS_COMMAND_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\brm\s+(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\b"), "recursive delete"),
    (re.compile(r"\brm\s+(?:-[a-zA-Z]+\s+)*(?:/|\*)(?:\s|$)"), "delete at filesystem root"),
    (re.compile(r"\bfind\b[^;&|\n]*\s(?:-delete\b|-exec\s+rm\b)"), "bulk delete via find"),
    (re.compile(r"(?:^|[;&|]\s*)shred\b"), "secure delete"),
    (re.compile(r"\bchmod\s+(?:-R|--recursive|777|0777|a\+rwx|[ugoa]*\+s)"), "permission change"),
    (re.compile(r"\bchown\s+(?:-R|--recursive)\b"), "ownership change"),
    (re.compile(r"(?:^|[;&|(]\s*)(?:sudo|su|doas)\b"), "privilege escalation"),
    (
        re.compile(r"\b(?:apt|apt-get|aptitude|yum|dnf|apk|pacman|zypper|brew)\s+(?:-\w+\s+)*(?:install|remove|purge|upgrade|add|del|-S\w*)\b"),
        "system package change",
    ),
    (
        re.compile(r"\bpip[0-9.]*\s+install\b[^;&|\n]*(?:--user|--break-system-packages|--target\s+/|--prefix|--root)"),
        "system-wide pip install",
    ),
    (re.compile(r"\bpip[0-9.]*\s+uninstall\b"), "package removal"),
    (re.compile(r"\b(?:npm|pnpm|yarn)\s+(?:install|i|add|uninstall|remove)\s+(?:[^;&|\n]*\s)?(?:-g|--global)\b"), "global package change"),
    (re.compile(r"\bgit\s+push\b[^;&|\n]*\s(?:-f|--force(?:-with-lease)?)\b"), "force push"),
    (re.compile(r"\bgit\s+reset\s+--hard\b"), "hard reset"),
    (re.compile(r"\bgit\s+clean\s+-\w*f"), "git clean"),
    (re.compile(r"(?:^|[;&|]\s*)(?:kill|pkill|killall)\b"), "process termination"),
    (re.compile(r"\bsystemctl\b|\bservice\s+\S+\s+(?:start|stop|restart|reload)\b"), "service control"),
    (re.compile(r"\bcrontab\b|\bat\s+now\b"), "scheduled execution"),
    (re.compile(r"\b(?:nohup|setsid|disown)\b|\bscreen\s+-d|\btmux\s+new(?:-session)?\b[^;&|\n]*-d"), "detached process"),
    (re.compile(r"(?:^|[;&|]\s*)(?:mount|umount|iptables|ip6tables|nft)\b"), "host configuration"),
    (re.compile(r"(?:^|[;&|]\s*)(?:docker|podman)\s"), "container control"),
    (re.compile(r"\btruncate\b\s+-s\s*0"), "file truncation"),
)

APPROVAL_CHAT_TYPES = frozenset({"private"})

# ---------------------------------------------------------------------------
# Output secrets
# ---------------------------------------------------------------------------

SECRET_KEY_WORDS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "PASSWD", "CREDENTIAL", "AUTH", "PRIVATE")

SECRET_ASSIGNMENT_RE = re.compile(
    r"(?P<key>\b[A-Za-z0-9_]*(?:KEY|TOKEN|SECRET|PASSWORD|PASSWD|CREDENTIALS?|AUTH)S?(?:_[A-Za-z0-9_]*)?)"
    r"(?P<sep>[\"']?\s*[=:]\s*)"
    r"(?P<quote>[\"']?)"
    r"(?P<value>(?!\[REDACTED\])[^\s\"'&;,]+)",
    re.IGNORECASE,
)

SECRET_TOKEN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bsk-ant-[A-Za-z0-9_\-]{20,}"), "anthropic key"),
    (re.compile(r"\bsk-(?:proj-)?[A-Za-z0-9_\-]{20,}"), "openai key"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}"), "github token"),
    (re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}"), "github token"),
    (re.compile(r"\bxox[abposr]-[A-Za-z0-9-]{10,}"), "slack token"),
    (re.compile(r"\b\d{8,10}:[A-Za-z0-9_-]{35}\b"), "telegram bot token"),
    (re.compile(r"\bAKIA[0-9A-Z]{16}\b"), "aws access key"),
    (re.compile(r"\bAIza[0-9A-Za-z_\-]{35}\b"), "google api key"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}"), "jwt"),
    (
        re.compile(
            r"\b(?:10(?:\.\d{1,3}){3}|127(?:\.\d{1,3}){3}|172\.(?:1[6-9]|2\d|3[01])(?:\.\d{1,3}){2}"
            r"|192\.168(?:\.\d{1,3}){2}):\d{2,5}\b"
        ),
        "internal address",
    ),
)

AUTH_HEADER_RE = re.compile(r"\b(?P<scheme>Bearer|Basic)\s+(?P<value>[A-Za-z0-9._~+/=\-]{8,})", re.IGNORECASE)
PRIVATE_KEY_BLOCK_RE = re.compile(
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?(?:-----END [A-Z ]*PRIVATE KEY-----|$)"
)

BASE64_RUN_RE = re.compile(r"[A-Za-z0-9+/_-]{20,}={0,2}")
SECRET_INDICATORS = (
    "TOKEN",
    "API_KEY",
    "APIKEY",
    "SECRET",
    "PASSWORD",
    "PRIVATE KEY",
    "AWS_ACCESS",
    "CREDENTIAL",
    "BEGIN RSA",
    "BEGIN OPENSSH",
)

ENV_DUMP_MIN_KEYS = 5
ENV_LINE_RE = re.compile(r"^\s*(?:export\s+|declare\s+-x\s+)?(?P<key>[A-Z_][A-Z0-9_]*)=", re.MULTILINE)
ENV_JSON_KEY_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")

REDACTED = "[REDACTED]"
MASK_SUFFIX = "***REDACTED***"
MASK_KEEP_PREFIX = 4
TRUNCATION_MARKER = "\n...(truncated)...\n"
