import re
import logging
from typing import Dict, List, Tuple
from urllib.parse import urlparse, unquote

from bs4 import BeautifulSoup
import tldextract

logger = logging.getLogger(__name__)

# Offline extractor: bundled public suffix snapshot, no network fetch, no disk cache
_tld_extract = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


class IOCExtractor:
    """
    Input preparation for the analyzers

    Turns raw user input (a URL, a pasted message, an email address) into the
    normalized, lowercase fields the rule catalogs are matched against:
    - URLs: text, host, subdomain, path
    - Messages: text (HTML stripped, link targets kept) and embedded URLs
    - Email addresses: text, username, domain
    """

    def __init__(self):
        self.url_pattern = re.compile(
            r'(?:https?://|www\.)'
            r'[a-zA-Z0-9\-._~:/?#\[\]@!$&\'()*+,;=%]+',
            re.IGNORECASE
        )

        self.html_tag_pattern = re.compile(r'<[a-zA-Z][^>]*>')

        # Used when urlparse rejects the input (e.g. unbalanced IPv6 brackets)
        self.url_split_pattern = re.compile(r'^(?:[a-z][a-z0-9+.-]*://)?([^/?#]*)([^#]*)')

        # Only bracketed forms; plain " at " / " dot " would corrupt prose
        self.defang_patterns = [
            (r'\[\.\]', '.'),
            (r'\(dot\)', '.'),
            (r'\[dot\]', '.'),
            (r'\[:\]', ':'),
            (r'hxxp', 'http'),
            (r'h\[tt\]p', 'http'),
        ]

    # ===== Normalization =====

    def normalize(self, text: str) -> str:
        """Collapse whitespace, trim and lowercase"""
        if not text:
            return ""
        return re.sub(r'\s+', ' ', text).strip().lower()

    def _defang(self, text: str) -> str:
        for pattern, replacement in self.defang_patterns:
            text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)
        return text

    def _extract_text_from_html(self, html: str) -> str:
        """
        Extract text from HTML content with URL preservation
        """
        try:
            soup = BeautifulSoup(html, 'lxml')

            for tag in soup.find_all(['a', 'img']):
                if tag.name == 'a' and tag.get('href'):
                    tag.string = f" {tag.get_text(' ')} {tag.get('href')} "
                elif tag.get('src'):
                    tag.string = f" {tag.get('src')} "

            return soup.get_text(separator=' ')
        except Exception as e:
            logger.warning(f"HTML parsing error: {e}")
            return re.sub(r'<[^>]+>', ' ', html)

    # ===== Field preparation =====

    def prepare_message(self, raw_text: str) -> Dict[str, str]:
        text = raw_text or ""
        if self.html_tag_pattern.search(text):
            text = self._extract_text_from_html(text)
        return {'text': self.normalize(self._defang(text))}

    def prepare_url(self, raw_url: str) -> Dict[str, str]:
        """
        Split a URL into the fields URL rules are matched against

        Args:
            raw_url: URL as typed by the user, scheme optional

        Returns:
            Dictionary with 'text', 'protocol', 'host', 'subdomain', 'path'
        """
        text = self.normalize(self._defang(raw_url or "")).replace(' ', '')
        if not text:
            return {'text': '', 'protocol': '', 'host': '', 'subdomain': '', 'path': ''}

        scheme_match = re.match(r'^([a-z][a-z0-9+.-]*)://', text)
        try:
            parsed = urlparse(text if scheme_match else f"http://{text}")
            host = (parsed.hostname or '').rstrip('.')
            path = unquote(parsed.path or '')
            if parsed.query:
                path = f"{path}?{unquote(parsed.query)}"
        except ValueError as e:
            logger.debug(f"Malformed URL {text}: {e}")
            host, path = self._split_url(text)

        subdomain = ''
        if host:
            try:
                subdomain = _tld_extract(host).subdomain
            except Exception as e:
                logger.debug(f"Error extracting subdomain from {host}: {e}")

        return {
            'text': text,
            'protocol': scheme_match.group(1) if scheme_match else 'unknown',
            'host': host,
            'subdomain': subdomain,
            'path': path,
        }

    def _split_url(self, text: str) -> Tuple[str, str]:
        """Regex split into (host, path) for URLs urlparse cannot handle"""
        match = self.url_split_pattern.match(text)
        netloc, rest = match.group(1), match.group(2)
        host = netloc.rpartition('@')[2]
        host = re.sub(r'[\[\]]', '', host).split(':')[0].rstrip('.')
        return host, unquote(rest)

    def prepare_email(self, raw_email: str) -> Dict[str, str]:
        # Inner whitespace is kept so the syntax check rejects it
        text = self.normalize(raw_email)
        username, sep, domain = text.rpartition('@')
        if not sep:
            username, domain = text, ''
        return {'text': text, 'username': username, 'domain': domain.rstrip('.')}

    # ===== Extraction =====

    def extract_urls(self, text: str) -> List[str]:
        """
        Extract embedded URLs, trailing punctuation removed, order preserved
        """
        urls = []
        for url in self.url_pattern.findall(text or ""):
            url = re.sub(r'[.,;:!?)\]]+$', '', url).strip()
            if len(url) > 4 and url not in urls:
                urls.append(url)
        return urls
