"""
Default content for the four journey pages, used when a client is created
and when a page is saved before it has any version.
"""

import copy
from typing import Dict, Any

from services.enums import PageType

DEFAULT_PAGE_CONTENT: Dict[str, Dict[str, Any]] = {
    PageType.ACTIVATION.value: {
        'title': 'Welcome to Template Genius',
        'body': "Begin your personalized template journey with us. We'll guide you through "
                "each step to create the perfect solution for your needs.",
        'metadata': {'page_order': 1, 'estimated_time': '5 minutes'},
    },
    PageType.AGREEMENT.value: {
        'title': 'Service Agreement',
        'body': "Review and accept our service terms and your project scope. This ensures "
                "we're aligned on deliverables and expectations.",
        'metadata': {'page_order': 2, 'estimated_time': '10 minutes', 'requires_signature': True},
    },
    PageType.CONFIRMATION.value: {
        'title': 'Project Confirmation',
        'body': "Confirm your project details and timeline. We'll finalize all specifications "
                "before beginning work.",
        'metadata': {'page_order': 3, 'estimated_time': '7 minutes'},
    },
    PageType.PROCESSING.value: {
        'title': 'Processing Your Request',
        'body': "We are preparing your custom templates. You'll receive updates throughout "
                "the creation process.",
        'metadata': {'page_order': 4, 'estimated_time': '2-5 business days'},
    },
}


def default_page_content(page_type: str) -> Dict[str, Any]:
    """A fresh copy of the default content for a page type"""
    return copy.deepcopy(DEFAULT_PAGE_CONTENT[page_type])
