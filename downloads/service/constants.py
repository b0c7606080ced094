"""
Download format constants.

Centralized definitions of formats, qualities and rate-limit windows.
"""

FORMAT_MP4 = 'mp4'
FORMAT_MP3 = 'mp3'
FORMAT_WEBM = 'webm'
FORMAT_AVI = 'avi'

# Format -> human readable description
FORMATS = {
    FORMAT_MP4: 'MP4 Video',
    FORMAT_MP3: 'MP3 Audio',
    FORMAT_WEBM: 'WebM Video',
    FORMAT_AVI: 'AVI Video',
}

# Formats that carry no video stream, quality does not apply
AUDIO_FORMATS = [FORMAT_MP3]

QUALITIES = {
    '144p': '144p',
    '240p': '240p',
    '360p': '360p',
    '480p': '480p',
    '720p': '720p',
    '1080p': '1080p',
    '1440p': '1440p',
    '2160p': '2160p (4K)',
}

DEFAULT_VIDEO_QUALITY = '720p'

# File extension per format
FORMAT_EXTENSIONS = {
    FORMAT_MP4: 'mp4',
    FORMAT_MP3: 'mp3',
    FORMAT_WEBM: 'webm',
    FORMAT_AVI: 'avi',
}

# Rate-limit window -> length in seconds
RATE_LIMIT_PERIODS = {
    'minute': 60,
    'hour': 3600,
    'day': 86400,
}
