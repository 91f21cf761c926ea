import codecs
import logging
import re
from typing import List, Dict, Optional, Any
from xml.sax.saxutils import unescape

from lxml import etree # Used by the conformant extractor for recover-mode parsing

logger = logging.getLogger(__name__)

# Substring every sitemap protocol namespace contains
SITEMAP_NS_DOMAIN = "sitemaps.org"

ROOT_URLSET = "urlset"
ROOT_SITEMAPINDEX = "sitemapindex"
ROOT_UNKNOWN = "unknown"

_XML_DECL_RE = re.compile(r"<\?xml[^>]*>", re.IGNORECASE)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_ROOT_RE = re.compile(r"<([A-Za-z_][^\s>/]*)([^>]*)>")
_XMLNS_RE = re.compile(r"""xmlns(?::[\w.\-]+)?\s*=\s*["']([^"']*)["']""", re.IGNORECASE)
_CDATA_RE = re.compile(r"^<!\[CDATA\[(.*)\]\]>$", re.DOTALL)
_ENTITIES = {"&quot;": '"', "&apos;": "'"}
_XML_ENCODING_RE = re.compile(rb"""^\s*<\?xml[^>]*?encoding\s*=\s*["']([A-Za-z0-9._\-]+)["']""")


def _tag_pattern(tag: str) -> "re.Pattern[str]":
    # "<url" must not match "<urlset", "<sitemap" must not match "<sitemapindex"
    return re.compile(rf"<{tag}(?:\s[^>]*)?>(.*?)</{tag}\s*>", re.IGNORECASE | re.DOTALL)


_LOC_RE = _tag_pattern("loc")
_LASTMOD_RE = _tag_pattern("lastmod")
_URL_BLOCK_RE = _tag_pattern("url")
_SITEMAP_BLOCK_RE = _tag_pattern("sitemap")


def _clean_text(raw: str) -> str:
    text = raw.strip()
    cdata = _CDATA_RE.match(text)
    if cdata:
        return cdata.group(1).strip()
    return unescape(text, _ENTITIES).strip()


def decode_xml(body: bytes, declared_encoding: Optional[str] = None) -> str:
    """Decodes a sitemap body to text.

    Precedence: UTF-8 BOM, then the transport charset, then the encoding in the
    XML declaration, then UTF-8. Unknown codec names are skipped with a warning.
    """
    if body.startswith(codecs.BOM_UTF8):
        return body[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")

    candidates = [declared_encoding]
    match = _XML_ENCODING_RE.match(body[:256])
    if match:
        candidates.append(match.group(1).decode("ascii"))

    for encoding in candidates:
        if not encoding:
            continue
        try:
            codecs.lookup(encoding)
        except LookupError:
            logger.warning(f"Unknown sitemap encoding {encoding!r}, ignoring it")
            continue
        return body.decode(encoding, errors="replace")
    return body.decode("utf-8", errors="replace")


class SitemapExtractor:
    """Pulls sitemap fields out of raw XML text.

    Every method is total: malformed or non-string input yields an empty
    result instead of an exception.
    """

    name = "base"

    def extract_locations(self, xml_content: str) -> List[str]:
        raise NotImplementedError

    def extract_locations_with_lastmod(self, xml_content: str) -> List[Dict[str, Optional[str]]]:
        raise NotImplementedError

    def extract_child_sitemap_urls(self, xml_content: str) -> List[str]:
        raise NotImplementedError

    def classify_root(self, xml_content: str) -> str:
        raise NotImplementedError

    def is_valid_sitemap(self, xml_content: str) -> bool:
        raise NotImplementedError


class RegexExtractor(SitemapExtractor):
    """
    Permissive tag-pair scanner.

    Not a conformant XML parser: nested or attribute-heavy documents are only
    handled as far as matching <tag>...</tag> pairs succeeds.
    """

    name = "regex"

    def extract_locations(self, xml_content: str) -> List[str]:
        try:
            locations = []
            for match in _LOC_RE.finditer(xml_content):
                url = _clean_text(match.group(1))
                if url:
                    locations.append(url)
            return locations
        except Exception as e:
            logger.error(f"Failed to extract <loc> values: {e}")
            return []

    def extract_locations_with_lastmod(self, xml_content: str) -> List[Dict[str, Optional[str]]]:
        try:
            entries = []
            for block in _URL_BLOCK_RE.finditer(xml_content):
                body = block.group(1)
                loc_match = _LOC_RE.search(body)
                if not loc_match:
                    continue
                url = _clean_text(loc_match.group(1))
                if not url:
                    continue
                lastmod_match = _LASTMOD_RE.search(body)
                lastmod = _clean_text(lastmod_match.group(1)) if lastmod_match else None
                entries.append({"url": url, "lastmod": lastmod or None})
            return entries
        except Exception as e:
            logger.error(f"Failed to extract <url> entries: {e}")
            return []

    def extract_child_sitemap_urls(self, xml_content: str) -> List[str]:
        try:
            children = []
            for block in _SITEMAP_BLOCK_RE.finditer(xml_content):
                loc_match = _LOC_RE.search(block.group(1))
                if loc_match:
                    url = _clean_text(loc_match.group(1))
                    if url:
                        children.append(url)
            return children
        except Exception as e:
            logger.error(f"Failed to extract child sitemaps: {e}")
            return []

    def _root(self, xml_content: str) -> Optional[Any]:
        body = _COMMENT_RE.sub("", _XML_DECL_RE.sub("", xml_content, count=1))
        return _ROOT_RE.search(body)

    def classify_root(self, xml_content: str) -> str:
        try:
            root = self._root(xml_content)
            if not root:
                return ROOT_UNKNOWN
            tag = root.group(1).split(":")[-1].lower()
            if tag in (ROOT_URLSET, ROOT_SITEMAPINDEX):
                return tag
            return ROOT_UNKNOWN
        except Exception as e:
            logger.debug(f"Could not classify root element: {e}")
            return ROOT_UNKNOWN

    def is_valid_sitemap(self, xml_content: str) -> bool:
        try:
            root = self._root(xml_content)
            if not root:
                return False
            tag = root.group(1).split(":")[-1].lower()
            namespaces = _XMLNS_RE.findall(root.group(2))
            if not any(SITEMAP_NS_DOMAIN in ns for ns in namespaces):
                return False
            if tag == ROOT_URLSET:
                return _URL_BLOCK_RE.search(xml_content) is not None
            if tag == ROOT_SITEMAPINDEX:
                return _SITEMAP_BLOCK_RE.search(xml_content) is not None
            return False
        except Exception as e:
            logger.debug(f"Sitemap validation failed: {e}")
            return False


class LxmlExtractor(SitemapExtractor):
    """
    Same contract as RegexExtractor, backed by lxml in recover mode.

    Element matching is namespace-agnostic (local-name()), so prefixed
    documents such as <sm:urlset> work too.
    """

    name = "lxml"

    def _parse(self, xml_content: str) -> Optional[Any]:
        if not xml_content or not isinstance(xml_content, str):
            return None
        # Text is already decoded; drop the declaration so lxml reads the bytes as UTF-8
        body = _XML_DECL_RE.sub("", xml_content, count=1).encode("utf-8")
        parser = etree.XMLParser(recover=True, remove_blank_text=True, resolve_entities=False)
        try:
            return etree.fromstring(body, parser=parser)
        except etree.XMLSyntaxError as e:
            logger.debug(f"XML syntax error: {e}")
            return None

    @staticmethod
    def _text(element: Any) -> str:
        return "".join(element.itertext()).strip()

    def extract_locations(self, xml_content: str) -> List[str]:
        try:
            root = self._parse(xml_content)
            if root is None:
                return []
            locations = [self._text(el) for el in root.xpath("//*[local-name()='loc']")]
            return [loc for loc in locations if loc]
        except Exception as e:
            logger.error(f"Failed to extract <loc> values: {e}")
            return []

    def extract_locations_with_lastmod(self, xml_content: str) -> List[Dict[str, Optional[str]]]:
        try:
            root = self._parse(xml_content)
            if root is None:
                return []
            entries = []
            for url_el in root.xpath("//*[local-name()='url']"):
                loc_els = url_el.xpath("*[local-name()='loc']")
                if not loc_els:
                    continue
                url = self._text(loc_els[0])
                if not url:
                    continue
                lastmod_els = url_el.xpath("*[local-name()='lastmod']")
                lastmod = self._text(lastmod_els[0]) if lastmod_els else None
                entries.append({"url": url, "lastmod": lastmod or None})
            return entries
        except Exception as e:
            logger.error(f"Failed to extract <url> entries: {e}")
            return []

    def extract_child_sitemap_urls(self, xml_content: str) -> List[str]:
        try:
            root = self._parse(xml_content)
            if root is None:
                return []
            children = []
            for loc_el in root.xpath("//*[local-name()='sitemap']/*[local-name()='loc']"):
                url = self._text(loc_el)
                if url:
                    children.append(url)
            return children
        except Exception as e:
            logger.error(f"Failed to extract child sitemaps: {e}")
            return []

    def classify_root(self, xml_content: str) -> str:
        try:
            root = self._parse(xml_content)
            if root is None or not isinstance(root.tag, str):
                return ROOT_UNKNOWN
            tag = etree.QName(root.tag).localname.lower()
            return tag if tag in (ROOT_URLSET, ROOT_SITEMAPINDEX) else ROOT_UNKNOWN
        except Exception as e:
            logger.debug(f"Could not classify root element: {e}")
            return ROOT_UNKNOWN

    def is_valid_sitemap(self, xml_content: str) -> bool:
        try:
            root = self._parse(xml_content)
            if root is None or not isinstance(root.tag, str):
                return False
            if not any(ns and SITEMAP_NS_DOMAIN in ns for ns in root.nsmap.values()):
                return False
            tag = etree.QName(root.tag).localname.lower()
            if tag == ROOT_URLSET:
                return bool(root.xpath("*[local-name()='url']"))
            if tag == ROOT_SITEMAPINDEX:
                return bool(root.xpath("*[local-name()='sitemap']"))
            return False
        except Exception as e:
            logger.debug(f"Sitemap validation failed: {e}")
            return False


_EXTRACTORS = {
    RegexExtractor.name: RegexExtractor,
    LxmlExtractor.name: LxmlExtractor,
}


def get_extractor(name: str = "regex") -> SitemapExtractor:
    """Returns an extractor by config name ("regex" or "lxml")."""
    try:
        return _EXTRACTORS[name]()
    except KeyError:
        raise ValueError(f"Unknown parser {name!r}. Expected one of {sorted(_EXTRACTORS)}")


_default_extractor = RegexExtractor()


def extract_locations(xml_content: str) -> List[str]:
    return _default_extractor.extract_locations(xml_content)


def extract_locations_with_lastmod(xml_content: str) -> List[Dict[str, Optional[str]]]:
    return _default_extractor.extract_locations_with_lastmod(xml_content)


def extract_child_sitemap_urls(xml_content: str) -> List[str]:
    return _default_extractor.extract_child_sitemap_urls(xml_content)


def classify_root(xml_content: str) -> str:
    return _default_extractor.classify_root(xml_content)


def is_valid_sitemap(xml_content: str) -> bool:
    return _default_extractor.is_valid_sitemap(xml_content)
