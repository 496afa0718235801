# env vars + constants
import os

SUI_NETWORK = os.getenv("SUI_NETWORK", "testnet")
SUI_RPC_URL = os.getenv("SUI_RPC_URL", f"https://fullnode.{SUI_NETWORK}.sui.io:443")

PACKAGE_ID = os.getenv(
    "SUIVOTE_PACKAGE_ID",
    "0xbdac727e5cc414447972208250748eeb28290ade37aea7ca6f824e3e98723ba9",
)
ADMIN_ID = os.getenv(
    "SUIVOTE_ADMIN_ID",
    "0x0c043dbfbc21ecb4426af4853d51264695a1c42c80c388c11d1ca703ab75c879",
)
CLOCK_OBJECT_ID = os.getenv("SUI_CLOCK_OBJECT_ID", "0x6")
GAS_BUDGET = int(os.getenv("SUI_GAS_BUDGET", "30000000"))
SUI_DECIMALS = int(os.getenv("SUI_DECIMALS", "9"))
DEFAULT_TOKEN_TYPE = "0x2::sui::SUI"

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30.0"))

WALRUS_PUBLISHER_URL = os.getenv("WALRUS_PUBLISHER_URL", "https://publisher.testnet.walrus.xyz")
WALRUS_AGGREGATOR_URL = os.getenv("WALRUS_AGGREGATOR_URL", "https://aggregator.testnet.walrus.xyz")
WALRUS_STORAGE_EPOCHS = int(os.getenv("WALRUS_STORAGE_EPOCHS", "10"))

MEDIA_MAX_BYTES = int(os.getenv("MEDIA_MAX_BYTES", str(10 * 1024 * 1024)))
UPLOAD_ATTEMPTS = int(os.getenv("UPLOAD_ATTEMPTS", "1"))
UPLOAD_RETRY_DELAY = float(os.getenv("UPLOAD_RETRY_DELAY", "1.0"))

RECONCILE_DEBOUNCE = float(os.getenv("RECONCILE_DEBOUNCE", "0.3"))
MAX_TRACKED_VOTES = int(os.getenv("MAX_TRACKED_VOTES", "10"))
EVENT_POLL_INTERVAL = float(os.getenv("EVENT_POLL_INTERVAL", "2.0"))

WEIGHT_SCALE = int(os.getenv("WEIGHT_SCALE", "1000000000"))
