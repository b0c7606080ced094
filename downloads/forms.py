from datetime import timedelta

from django import forms
from django.utils import timezone

from downloads.models import DownloadJob
from downloads.service.config import get_dedupe_window
from downloads.service.constants import AUDIO_FORMATS, DEFAULT_VIDEO_QUALITY, FORMATS, QUALITIES
from downloads.utils import extract_video_id, normalize_url, validate_url


class DownloadRequestForm(forms.Form):
    """
    Validate a download submission.

    cleaned_data gains 'video_id', 'quality' is defaulted for video
    formats and forced to None for audio, and 'async' defaults to True.
    """

    url = forms.CharField(
        max_length=2048,
        error_messages={'required': 'YouTube URL is required.'},
    )
    format = forms.ChoiceField(
        choices=DownloadJob.FORMAT_CHOICES,
        error_messages={
            'required': 'Download format is required.',
            'invalid_choice': 'Invalid format. Supported formats: ' + ', '.join(FORMATS),
        },
    )
    quality = forms.ChoiceField(
        choices=DownloadJob.QUALITY_CHOICES,
        required=False,
        error_messages={
            'invalid_choice': 'Invalid quality. Supported qualities: ' + ', '.join(QUALITIES),
        },
    )

    def __init__(self, data=None, ip_address=None, **kwargs):
        super().__init__(data, **kwargs)
        self.ip_address = ip_address
        # 'async' is a keyword, so it cannot be declared as a class attribute
        self.fields['async'] = forms.NullBooleanField(required=False, widget=forms.TextInput)

    def clean_url(self):
        url = self.cleaned_data['url'].strip()
        if not validate_url(url):
            raise forms.ValidationError('The URL must be a valid YouTube video URL.')
        return normalize_url(url)

    def clean(self):
        cleaned_data = super().clean()
        url = cleaned_data.get('url')
        fmt = cleaned_data.get('format')
        quality = cleaned_data.get('quality')

        if fmt in AUDIO_FORMATS:
            if quality:
                self.add_error('quality', 'Quality parameter is not applicable for audio format.')
            cleaned_data['quality'] = None
        elif fmt:
            cleaned_data['quality'] = quality or DEFAULT_VIDEO_QUALITY

        if cleaned_data.get('async') is None:
            cleaned_data['async'] = True

        if not url or not fmt or self.has_error('url'):
            return cleaned_data

        video_id = extract_video_id(url)
        if not video_id:
            self.add_error('url', 'Could not extract video ID from the provided URL.')
            return cleaned_data
        cleaned_data['video_id'] = video_id

        if self.ip_address and self._is_duplicate(video_id, fmt):
            self.add_error(
                'url',
                'A download request for this video in the same format was made recently. '
                'Please wait before making another request.',
            )

        return cleaned_data

    def _is_duplicate(self, video_id, fmt):
        since = timezone.now() - timedelta(seconds=get_dedupe_window())
        return DownloadJob.objects.filter(
            video_id=video_id,
            format=fmt,
            ip_address=self.ip_address,
            created_at__gte=since,
        ).exists()


class VideoLookupForm(forms.Form):
    """URL (and optionally format) for the metadata endpoints"""

    url = forms.CharField(max_length=2048, error_messages={'required': 'YouTube URL is required.'})
    format = forms.ChoiceField(choices=DownloadJob.FORMAT_CHOICES, required=False)

    def clean_url(self):
        url = self.cleaned_data['url'].strip()
        if not validate_url(url):
            raise forms.ValidationError('Invalid YouTube URL provided.', code='invalid_url')
        return normalize_url(url)


class HistoryFilterForm(forms.Form):
    page = forms.IntegerField(required=False, min_value=1)
    per_page = forms.IntegerField(required=False, min_value=1, max_value=100)
    status = forms.ChoiceField(choices=DownloadJob.STATUS_CHOICES, required=False)
