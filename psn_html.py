"""
PSN Library HTML Preview
========================
Builds a self-contained HTML page (data + CSS + JS inline) for browsing the
merged library: search, sort, group by platform, capsule/wide card views and
a platform filter dropdown.
"""

import html
import json

# Display name -> platform key used for filtering
PLATFORM_FILTERS = [
    ("PC",   "PSPC"),
    ("PS5",  "PS5"),
    ("PS4",  "PS4"),
    ("PS3",  "PS3"),
    ("Vita", "PSVITA"),
]


def card_art(item):
    """Best image URL for a card: merged cover, then the store image."""
    images = item.get("images") or {}
    store_image = item.get("image") if isinstance(item.get("image"), dict) else {}
    return images.get("cover") or store_image.get("url") or ""


def preview_rows(library):
    """Slim down library entries to what the page renders."""
    rows = []
    for item in library:
        images = item.get("images") or {}
        rows.append({
            "name":        item.get("displayName") or item.get("name") or "",
            "platform":    item.get("platform") or "",
            "gridUrl":     card_art(item),
            "wideGridUrl": images.get("hero") or images.get("master") or "",
            "progress":    item.get("trophyProgress"),
            "source":      item.get("source") or [],
        })
    return rows


def _script_json(data):
    """JSON safe to inline inside a <script> element."""
    return json.dumps(data, ensure_ascii=False).replace("</", "<\\/")


def build_html(library, title="PSN Library"):
    """Build the self-contained preview page for a merged library."""
    rows = preview_rows(library)
    platform_checkboxes = "".join(
        f'<label><input type="checkbox" data-key="{key}" data-display="{disp}" checked> {disp}</label>'
        for disp, key in PLATFORM_FILTERS
    )

    return (
        '<!DOCTYPE html><html lang="en"><head><meta charset="utf-8">'
        f'<title>{html.escape(title)}</title>'
        '<meta name="viewport" content="width=device-width,initial-scale=1">'
        '<style>\n'
        'body{font-family:system-ui,sans-serif;background:#0f1115;color:#e6e6e6;margin:0;padding:16px}\n'
        '.toolbar{display:flex;gap:8px;flex-wrap:wrap;align-items:center;margin-bottom:12px}\n'
        '.toolbar button.active{background:#2f6fed;color:#fff}\n'
        '.dropdown{position:relative}\n'
        '.dropdown-content{display:none;position:absolute;background:#1b1e25;padding:8px;z-index:10}\n'
        '.dropdown-content.show{display:flex;flex-direction:column}\n'
        '.library-grid{display:flex;flex-wrap:wrap;gap:10px}\n'
        '.group-title{width:100%;font-weight:bold;margin:14px 0 4px;border-bottom:1px solid #333}\n'
        '.capsule{width:150px;height:225px}.widecapsule{width:300px;height:140px}\n'
        '.capsule,.widecapsule{background:#1b1e25;align-items:center;justify-content:center;'
        'text-align:center;overflow:hidden;border-radius:6px}\n'
        '.capsule img,.widecapsule img{width:100%;height:100%;object-fit:cover}\n'
        '.count{color:#999;font-size:13px}\n'
        '</style></head><body>\n'
        f'<h1>{html.escape(title)} <span class="count" id="count"></span></h1>\n'
        '<div class="toolbar">'
        '<button id="btnCapsule" class="active">Capsule</button>'
        '<button id="btnWide">Wide</button>'
        '<input id="searchBox" type="search" placeholder="Search name or platform">'
        '<select id="sortSelect"><option value="az">A-Z</option><option value="za">Z-A</option>'
        '<option value="platform">Platform</option></select>'
        '<select id="groupSelect"><option value="none">No grouping</option>'
        '<option value="platform">Group by platform</option></select>'
        '<div class="dropdown"><button id="platform-filter-btn" aria-expanded="false">Platforms: All</button>'
        f'<div id="platform-filter-content" class="dropdown-content" aria-hidden="true">{platform_checkboxes}</div></div>'
        '</div>\n'
        '<div id="libraryContainer"></div>\n'
        '<script>\n'
        f'const rawData={_script_json(rows)};\n'
        'const ALL_PLATFORMS=' + _script_json([key for _, key in PLATFORM_FILTERS]) + ';\n'
        "let currentView='capsule',currentSort='az',currentGroup='none',searchTerm='';\n"
        "const esc=s=>String(s).replace(/[&<>\"']/g,c=>({'&':'&amp;','<':'&lt;','>':'&gt;','\"':'&quot;',\"'\":'&#39;'}[c]));\n"
        "function selectedPlatforms(){return Array.from(document.querySelectorAll('#platform-filter-content input:checked')).map(c=>c.dataset.key)}\n"
        "function platformAllowed(g,sel){if(sel.length===0||sel.length===ALL_PLATFORMS.length)return true;"
        "const tags=(g.platform||'').split(',');return tags.some(t=>sel.includes(t))}\n"
        "function renderCards(list){return list.map(g=>`<div class=\"game-card\">"
        "<div class=\"capsule\" style=\"display:${currentView==='capsule'?'flex':'none'}\">"
        "${g.gridUrl?`<img src=\"${esc(g.gridUrl)}\" alt=\"${esc(g.name)}\">`:`<span>${esc(g.name)}</span>`}</div>"
        "<div class=\"widecapsule\" style=\"display:${currentView==='wide'?'flex':'none'}\">"
        "${g.wideGridUrl?`<img src=\"${esc(g.wideGridUrl)}\" alt=\"${esc(g.name)}\">`:`<span>${esc(g.name)}</span>`}</div>"
        "</div>`).join('')}\n"
        "function render(){let data=[...rawData];const sel=selectedPlatforms();\n"
        "if(searchTerm.trim()!==''){const t=searchTerm.toLowerCase();"
        "data=data.filter(g=>g.name.toLowerCase().includes(t)||g.platform.toLowerCase().includes(t))}\n"
        "data=data.filter(g=>platformAllowed(g,sel));\n"
        "if(currentSort==='az')data.sort((a,b)=>a.name.localeCompare(b.name));\n"
        "else if(currentSort==='za')data.sort((a,b)=>b.name.localeCompare(a.name));\n"
        "else data.sort((a,b)=>a.platform.localeCompare(b.platform)||a.name.localeCompare(b.name));\n"
        "let h='';if(currentGroup==='platform'){const groups={};"
        "for(const g of data){const k=g.platform||'Unknown';(groups[k]=groups[k]||[]).push(g)}"
        "for(const p of Object.keys(groups).sort()){h+=`<div class=\"group-title\">${esc(p)}</div>`+renderCards(groups[p])}}\n"
        "else h=renderCards(data);\n"
        "document.getElementById('libraryContainer').innerHTML=`<div class=\"library-grid\">${h}</div>`;\n"
        "document.getElementById('count').textContent=`${data.length} of ${rawData.length}`}\n"
        "function setView(v){currentView=v;document.getElementById('btnCapsule').classList.toggle('active',v==='capsule');"
        "document.getElementById('btnWide').classList.toggle('active',v==='wide');render()}\n"
        "document.getElementById('btnCapsule').onclick=()=>setView('capsule');\n"
        "document.getElementById('btnWide').onclick=()=>setView('wide');\n"
        "document.getElementById('sortSelect').onchange=e=>{currentSort=e.target.value;render()};\n"
        "document.getElementById('groupSelect').onchange=e=>{currentGroup=e.target.value;render()};\n"
        "document.getElementById('searchBox').oninput=e=>{searchTerm=e.target.value;render()};\n"
        "const fb=document.getElementById('platform-filter-btn'),fc=document.getElementById('platform-filter-content');\n"
        "fc.addEventListener('change',()=>{const c=fc.querySelectorAll('input:checked');"
        "const names=Array.from(c).map(x=>x.dataset.display);"
        "fb.textContent=(c.length===0||c.length===ALL_PLATFORMS.length)?'Platforms: All':"
        "(names.length<=3?'Platforms: '+names.join(', '):'Platforms: '+names.length+' selected');render()});\n"
        "fb.addEventListener('click',e=>{e.stopPropagation();const open=fc.classList.toggle('show');"
        "fb.setAttribute('aria-expanded',String(open));fc.setAttribute('aria-hidden',String(!open))});\n"
        "fc.addEventListener('click',e=>e.stopPropagation());\n"
        "document.addEventListener('click',()=>{fc.classList.remove('show');fb.setAttribute('aria-expanded','false')});\n"
        'render();\n'
        '</script></body></html>'
    )
