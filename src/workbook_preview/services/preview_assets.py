"""Stylesheet and browser script returned alongside a rendered preview.

Both are opaque payloads for the client: the stylesheet styles the classes
emitted by the renderer, and the script blocks copy shortcuts on the table
and mirrors the clicked cell's formula into an element with id
``formulaContent``.
"""

PREVIEW_STYLES = """
.excel-table-wrapper {
  max-width: 100%;
  overflow: auto;
  border: 1px solid #b7b7b7;
  background: #ffffff;
  position: relative;
  font-family: 'Calibri', 'Arial', sans-serif;
}

.excel-formatted-table {
  border-collapse: collapse;
  table-layout: fixed;
  font-size: 11px;
  white-space: nowrap;
  background: #ffffff;
  -webkit-user-select: none;
  user-select: none;
}

.excel-formatted-table th,
.excel-formatted-table td {
  border: none;
  padding: 2px 3px;
  overflow: hidden;
  text-overflow: ellipsis;
}

.excel-formatted-table td.has-border-top { border-top: 1px solid #d0d7de; }
.excel-formatted-table td.has-border-bottom { border-bottom: 1px solid #d0d7de; }
.excel-formatted-table td.has-border-left { border-left: 1px solid #d0d7de; }
.excel-formatted-table td.has-border-right { border-right: 1px solid #d0d7de; }

.excel-row-header,
.excel-col-header {
  background: linear-gradient(180deg, #f0f0f0 0%, #e0e0e0 100%);
  color: #1f2937;
  font-weight: normal;
  text-align: center;
  padding: 4px 8px;
  position: sticky;
  z-index: 10;
  border: 1px solid #d0d7de;
}

.excel-row-header { left: 0; width: 40px; min-width: 40px; }
.excel-col-header { top: 0; height: 20px; }

.excel-cell {
  position: relative;
  cursor: cell;
  vertical-align: bottom;
  line-height: 1.2;
}

.excel-cell:hover { outline: 1px solid #4a90e2; outline-offset: -1px; }

.excel-cell.selected {
  outline: 2px solid #1a73e8;
  outline-offset: -1px;
  background-color: rgba(26, 115, 232, 0.08) !important;
}

.excel-cell[data-formula]:hover::after {
  content: '=' attr(data-formula);
  position: absolute;
  bottom: 100%;
  left: 0;
  background: #333333;
  color: #ffffff;
  padding: 4px 8px;
  border-radius: 4px;
  white-space: nowrap;
  z-index: 1000;
  pointer-events: none;
}

.excel-cell[style*="--bar-width"] {
  background-repeat: no-repeat;
  background-position: left center;
}

.positive-value { color: #008000; }
.negative-value { color: #ff0000; }

@media print {
  .excel-formatted-table { display: none !important; }
}
"""

ANTI_COPY_SCRIPT = """
(function () {
  var tables = document.querySelectorAll('.excel-formatted-table');
  var block = function (event) { event.preventDefault(); return false; };

  tables.forEach(function (table) {
    table.addEventListener('contextmenu', block);
    table.addEventListener('selectstart', block);
    table.addEventListener('dragstart', block);
  });

  document.addEventListener('keydown', function (event) {
    if (!document.querySelector('.excel-formatted-table:hover')) { return; }
    var key = (event.key || '').toLowerCase();
    if ((event.ctrlKey || event.metaKey) && ['c', 'a', 'x', 'v', 'p'].indexOf(key) !== -1) {
      event.preventDefault();
    }
  });

  document.addEventListener('click', function (event) {
    var cell = event.target.closest('.excel-cell');
    if (!cell) { return; }
    document.querySelectorAll('.excel-cell.selected').forEach(function (other) {
      other.classList.remove('selected');
    });
    cell.classList.add('selected');
    var formulaBar = document.getElementById('formulaContent');
    if (formulaBar) {
      var formula = cell.dataset.formula;
      formulaBar.textContent = formula ? '=' + formula : cell.textContent;
    }
  });
})();
"""
