ARCHIVE_MANIFEST_NAME = "DOWNLOAD_ERRORS.txt"
AUDIO_MEDIA_TYPE = "audio/mpeg"
ARCHIVE_MEDIA_TYPE = "application/zip"

ARTIST_TOP_TRACKS_LIMIT = 10
SPOTIFY_SEARCH_LIMIT = 20

DISPATCHER_ERROR_BACKOFF_SECONDS = 5
TOKEN_REFRESH_RETRY_SECONDS = 60

WEBHOOK_MAX_RETRIES = 3
WEBHOOK_RETRY_BASE_DELAY = 5
WEBHOOK_TIMEOUT_SECONDS = 30

# share of a single fetch's progress spent downloading; tagging covers the rest
DOWNLOAD_PROGRESS_SHARE = 90.0

WEBSHARE_PROXY_LIST_URL = "https://proxy.webshare.io/api/v2/proxy/list/"
WEBSHARE_PAGE_SIZE = 100

# how often a blocked worker thread checks whether its fetch was abandoned
ABORT_POLL_SECONDS = 0.2
FFMPEG_TIMEOUT_SECONDS = 300
